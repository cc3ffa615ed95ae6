"""
Idempotency store for scheduling events.

The orchestrator remembers the result of each successfully handled event
for a short window, keyed by event name and payload fingerprint. A repeat
of the same event inside the window gets the stored result back instead
of running the handler again.

Backends:
1. Redis, when REDIS_URL is set (shared by all workers)
2. Process memory otherwise (one worker, development and tests)
"""
import json
import hashlib
from dataclasses import dataclass
from typing import Any, Optional, Dict, Tuple
from abc import ABC, abstractmethod
import asyncio
import logging
import time

import redis.asyncio as redis
from redis.exceptions import RedisError

from coachflow.config import settings
from coachflow.database import custom_json_dumps

logger = logging.getLogger(__name__)


class CacheBackend(ABC):
    """Key/value storage with per-entry expiry."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int) -> bool:
        ...


class InMemoryCache(CacheBackend):
    """Dict of key -> (value, monotonic deadline). Expired entries are dropped on write."""

    def __init__(self):
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, deadline = entry
            if deadline <= time.monotonic():
                self._entries.pop(key, None)
                return None
            return value

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        async with self._lock:
            now = time.monotonic()
            for stale in [k for k, (_, deadline) in self._entries.items() if deadline <= now]:
                del self._entries[stale]
            self._entries[key] = (value, now + ttl)
            return True

    def __len__(self) -> int:
        return len(self._entries)


class RedisCache(CacheBackend):
    """
    Redis backend. Values are stored as JSON with a server-side expiry.

    Redis errors are logged and treated as a miss, so an outage disables
    deduplication rather than failing the event.
    """

    def __init__(self, redis_url: str):
        self._redis_url = redis_url
        self._client: Optional[redis.Redis] = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(key)
        except RedisError as e:
            logger.warning(f"Idempotency lookup failed for {key}: {e}")
            return None
        return json.loads(raw) if raw else None

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        try:
            await self.client.set(key, custom_json_dumps(value), ex=max(ttl, 1))
        except RedisError as e:
            logger.warning(f"Idempotency store failed for {key}: {e}")
            return False
        return True


@dataclass
class IdempotencyCheck:
    """Result of an idempotency lookup."""
    is_duplicate: bool
    cached_result: Optional[Any] = None


class CacheService:
    """
    Idempotency keys on top of a backend.

    Stored keys look like:

        coachflow:idempotency:session.cancel:3f2a9c1b7d0e4a55
    """

    def __init__(self, backend: CacheBackend, namespace: str = "coachflow"):
        self._backend = backend
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:idempotency:{key}"

    @staticmethod
    def hash_params(params: dict) -> str:
        """Stable short hash of a payload, independent of key order."""
        canonical = json.dumps(params, sort_keys=True, default=str)
        return hashlib.md5(canonical.encode()).hexdigest()[:16]

    async def check_idempotency(self, key: str) -> IdempotencyCheck:
        cached = await self._backend.get(self._key(key))
        if cached is None:
            return IdempotencyCheck(is_duplicate=False)
        return IdempotencyCheck(is_duplicate=True, cached_result=cached)

    async def set_idempotency(self, key: str, result: Any, ttl_seconds: Optional[int] = None) -> bool:
        ttl = ttl_seconds or settings.IDEMPOTENCY_WINDOW_SECONDS
        return await self._backend.set(self._key(key), result, ttl)


_cache_instance: Optional[CacheService] = None


def get_cache() -> CacheService:
    """Process-wide idempotency store, built on first use."""
    global _cache_instance

    if _cache_instance is None:
        if settings.REDIS_URL and settings.CACHE_ENABLED:
            backend: CacheBackend = RedisCache(settings.REDIS_URL)
            logger.info("Idempotency store using Redis")
        else:
            backend = InMemoryCache()
            logger.info("Idempotency store using process memory")
        _cache_instance = CacheService(backend, namespace=settings.CACHE_NAMESPACE)

    return _cache_instance
