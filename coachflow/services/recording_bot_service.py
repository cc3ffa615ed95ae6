"""
Recording-Bot Adapter

Schedules a Recall.ai notetaker bot to join a session's meeting. Bots are
best-effort: failures are logged and never block a session mutation.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

import httpx

from coachflow.config import settings

logger = logging.getLogger(__name__)


@dataclass
class BotResult:
    success: bool
    bot_id: Optional[str] = None
    error: Optional[str] = None


class RecordingBotAdapter(ABC):
    """Recording bot collaborator interface."""

    @abstractmethod
    async def schedule(self, session_id: UUID, meeting_url: str, scheduled_time: datetime) -> BotResult:
        """Ask a bot to join `meeting_url` at `scheduled_time`."""

    @abstractmethod
    async def cancel(self, bot_id: str) -> bool:
        """Cancel a scheduled bot."""


class NullRecordingBotAdapter(RecordingBotAdapter):
    """Used when no recording provider is configured."""

    async def schedule(self, session_id, meeting_url, scheduled_time):
        return BotResult(success=False, error="Recording bot not configured")

    async def cancel(self, bot_id):
        return True


class RecallBotAdapter(RecordingBotAdapter):
    """Recall.ai bot scheduling."""

    def __init__(
        self,
        api_key: str,
        api_url: str = settings.RECALL_API_URL,
        bot_name: str = settings.RECALL_BOT_NAME,
        timeout: float = settings.EXTERNAL_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.bot_name = bot_name
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers={"Authorization": f"Token {self.api_key}"},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def schedule(self, session_id, meeting_url, scheduled_time):
        body = {
            "meeting_url": meeting_url,
            "bot_name": self.bot_name,
            "join_at": scheduled_time.isoformat(),
            "metadata": {"session_id": str(session_id)},
        }
        try:
            async with self._client() as client:
                response = await client.post("/bot/", json=body)
        except httpx.HTTPError as e:
            logger.warning(f"Recall bot scheduling failed for session {session_id}: {e}")
            return BotResult(success=False, error=str(e))

        if response.status_code not in (200, 201):
            logger.warning(f"Recall bot rejected ({response.status_code}) for session {session_id}")
            return BotResult(success=False, error=f"Recall API error {response.status_code}")

        bot_id = response.json().get("id")
        logger.info(f"Recall bot {bot_id} scheduled for session {session_id}")
        return BotResult(success=True, bot_id=bot_id)

    async def cancel(self, bot_id):
        try:
            async with self._client() as client:
                response = await client.delete(f"/bot/{bot_id}/")
        except httpx.HTTPError as e:
            logger.warning(f"Recall bot cancel failed for {bot_id}: {e}")
            return False
        return response.status_code in (200, 204, 404)


def get_recording_bot_adapter() -> RecordingBotAdapter:
    if settings.RECALL_API_KEY:
        return RecallBotAdapter(api_key=settings.RECALL_API_KEY)
    return NullRecordingBotAdapter()
