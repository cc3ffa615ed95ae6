"""
Calendar / Meeting Adapter

Creates, updates and cancels video-call events for coaching sessions.

- GoogleCalendarAdapter: Google Calendar v3 REST API with a Meet conference
- NullCalendarAdapter: used when calendar integration is disabled

Errors are returned as CalendarEventResult(success=False, error=...) and
never raised, so callers can log and continue. Event creation is NOT
idempotent: every successful call books a new event.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Dict, Any

import httpx

from coachflow.config import settings

logger = logging.getLogger(__name__)


@dataclass
class CalendarEventResult:
    """Outcome of a calendar operation."""
    success: bool
    event_id: Optional[str] = None
    meeting_link: Optional[str] = None
    error: Optional[str] = None


class CalendarAdapter(ABC):
    """Calendar collaborator interface."""

    @abstractmethod
    async def create_event(
        self,
        title: str,
        description: str,
        start: datetime,
        end: datetime,
        attendees: List[str],
        organizer_email: Optional[str] = None,
    ) -> CalendarEventResult:
        """Book a new event with a meeting link."""

    @abstractmethod
    async def update_event(self, event_id: str, changes: Dict[str, Any]) -> CalendarEventResult:
        """
        Patch an existing event.

        Supported changes: start, end (datetime), location (str),
        attendees (list of emails), remove_meet (bool).
        """

    @abstractmethod
    async def cancel_event(self, event_id: str) -> CalendarEventResult:
        """Cancel an event. Cancelling an already-cancelled event succeeds."""


class NullCalendarAdapter(CalendarAdapter):
    """Adapter used when no calendar integration is configured."""

    async def create_event(self, title, description, start, end, attendees, organizer_email=None):
        logger.info(f"Calendar disabled, not booking '{title}' at {start.isoformat()}")
        return CalendarEventResult(success=True)

    async def update_event(self, event_id, changes):
        return CalendarEventResult(success=True, event_id=event_id)

    async def cancel_event(self, event_id):
        return CalendarEventResult(success=True, event_id=event_id)


class GoogleCalendarAdapter(CalendarAdapter):
    """Google Calendar + Meet over the REST API."""

    def __init__(
        self,
        access_token: str,
        calendar_id: str = "primary",
        api_url: str = settings.GOOGLE_CALENDAR_API_URL,
        time_zone: str = settings.CALENDAR_TIMEZONE,
        timeout: float = settings.EXTERNAL_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.calendar_id = calendar_id
        self.api_url = api_url.rstrip("/")
        self.time_zone = time_zone
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers={"Authorization": f"Bearer {self.access_token}"},
            timeout=self.timeout,
            transport=self._transport,
        )

    def _events_path(self, event_id: Optional[str] = None) -> str:
        path = f"/calendars/{self.calendar_id}/events"
        return f"{path}/{event_id}" if event_id else path

    def _when(self, value: datetime) -> Dict[str, str]:
        return {"dateTime": value.isoformat(), "timeZone": self.time_zone}

    @staticmethod
    def _meeting_link(event: Dict[str, Any]) -> Optional[str]:
        if event.get("hangoutLink"):
            return event["hangoutLink"]
        for entry in event.get("conferenceData", {}).get("entryPoints", []):
            if entry.get("entryPointType") == "video":
                return entry.get("uri")
        return None

    async def create_event(self, title, description, start, end, attendees, organizer_email=None):
        attendee_list = [{"email": email} for email in attendees if email]
        if organizer_email:
            attendee_list.append({"email": organizer_email, "organizer": True})

        body = {
            "summary": title,
            "description": description,
            "start": self._when(start),
            "end": self._when(end),
            "attendees": attendee_list,
            "conferenceData": {
                "createRequest": {
                    "requestId": str(uuid.uuid4()),
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            },
            "reminders": {"useDefault": False, "overrides": [{"method": "popup", "minutes": 30}]},
        }

        try:
            async with self._client() as client:
                response = await client.post(
                    self._events_path(),
                    params={"conferenceDataVersion": 1, "sendUpdates": "all"},
                    json=body,
                )
        except httpx.HTTPError as e:
            logger.error(f"Calendar create failed for '{title}': {e}")
            return CalendarEventResult(success=False, error=f"Calendar request failed: {e}")

        if response.status_code not in (200, 201):
            logger.error(f"Calendar create rejected ({response.status_code}): {response.text[:300]}")
            return CalendarEventResult(success=False, error=f"Calendar API error {response.status_code}")

        event = response.json()
        logger.info(f"Calendar event created: {event.get('id')}")
        return CalendarEventResult(
            success=True,
            event_id=event.get("id"),
            meeting_link=self._meeting_link(event),
        )

    async def update_event(self, event_id, changes):
        body: Dict[str, Any] = {}
        if changes.get("start"):
            body["start"] = self._when(changes["start"])
        if changes.get("end"):
            body["end"] = self._when(changes["end"])
        if "location" in changes:
            body["location"] = changes["location"]
        if changes.get("attendees"):
            body["attendees"] = [{"email": email} for email in changes["attendees"] if email]
        if changes.get("remove_meet"):
            body["conferenceData"] = None

        try:
            async with self._client() as client:
                response = await client.patch(
                    self._events_path(event_id),
                    params={"conferenceDataVersion": 1, "sendUpdates": "all"},
                    json=body,
                )
        except httpx.HTTPError as e:
            logger.error(f"Calendar update failed for {event_id}: {e}")
            return CalendarEventResult(success=False, event_id=event_id, error=f"Calendar request failed: {e}")

        if response.status_code != 200:
            logger.error(f"Calendar update rejected ({response.status_code}) for {event_id}")
            return CalendarEventResult(
                success=False, event_id=event_id, error=f"Calendar API error {response.status_code}"
            )

        event = response.json()
        return CalendarEventResult(success=True, event_id=event_id, meeting_link=self._meeting_link(event))

    async def cancel_event(self, event_id):
        try:
            async with self._client() as client:
                response = await client.delete(self._events_path(event_id), params={"sendUpdates": "all"})
        except httpx.HTTPError as e:
            logger.error(f"Calendar cancel failed for {event_id}: {e}")
            return CalendarEventResult(success=False, event_id=event_id, error=f"Calendar request failed: {e}")

        # 404/410: already gone
        if response.status_code in (200, 204, 404, 410):
            return CalendarEventResult(success=True, event_id=event_id)

        logger.error(f"Calendar cancel rejected ({response.status_code}) for {event_id}")
        return CalendarEventResult(success=False, event_id=event_id, error=f"Calendar API error {response.status_code}")


def get_calendar_adapter() -> CalendarAdapter:
    """Build the configured calendar adapter."""
    if settings.GOOGLE_CALENDAR_ENABLED and settings.GOOGLE_CALENDAR_ACCESS_TOKEN:
        return GoogleCalendarAdapter(
            access_token=settings.GOOGLE_CALENDAR_ACCESS_TOKEN,
            calendar_id=settings.GOOGLE_CALENDAR_ID,
        )
    return NullCalendarAdapter()
