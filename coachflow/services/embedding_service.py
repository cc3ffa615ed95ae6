"""Client for the external embedding service used for session recall/search."""
import logging
from typing import List, Optional

import httpx

from coachflow.config import settings

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when the embedding service cannot produce a vector."""
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class EmbeddingClient:
    """Thin async client: text in, vector out."""

    def __init__(
        self,
        api_url: str = settings.EMBEDDING_API_URL,
        api_key: str = settings.EMBEDDING_API_KEY,
        model: str = settings.EMBEDDING_MODEL,
        timeout: float = settings.EXTERNAL_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_url)

    async def generate(self, text: str) -> List[float]:
        if not self.enabled:
            raise EmbeddingError("Embedding service not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"model": self.model, "input": text},
                )
        except httpx.HTTPError as e:
            raise EmbeddingError(f"Embedding request failed: {e}")

        if response.status_code != 200:
            raise EmbeddingError(
                f"Embedding API error {response.status_code}",
                {"body": response.text[:300]},
            )

        try:
            data = response.json()
        except ValueError:
            raise EmbeddingError("Embedding response was not JSON", {"body": response.text[:300]})

        vector = None
        if isinstance(data, dict):
            vector = data.get("embedding")
            items = data.get("data")
            if vector is None and isinstance(items, list) and items and isinstance(items[0], dict):
                vector = items[0].get("embedding")
        if not isinstance(vector, list) or not vector:
            raise EmbeddingError("Embedding response had no vector")
        return vector
