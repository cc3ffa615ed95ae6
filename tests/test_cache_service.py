"""In-memory idempotency store."""
import asyncio

from coachflow.services.cache_service import CacheService, InMemoryCache


async def test_idempotency_roundtrip(cache):
    assert (await cache.check_idempotency("session.cancel:abc")).is_duplicate is False

    await cache.set_idempotency("session.cancel:abc", {"success": True}, ttl_seconds=10)
    check = await cache.check_idempotency("session.cancel:abc")

    assert check.is_duplicate is True
    assert check.cached_result == {"success": True}


async def test_entries_expire_and_are_dropped_on_next_write():
    backend = InMemoryCache()
    cache = CacheService(backend, namespace="test")

    await backend.set("test:idempotency:session.cancel:short", {"success": True}, ttl=0)
    await asyncio.sleep(0.01)

    assert (await cache.check_idempotency("session.cancel:short")).is_duplicate is False

    await backend.set("other", 1, ttl=0)
    await asyncio.sleep(0.01)
    await cache.set_idempotency("session.cancel:long", {"success": True}, ttl_seconds=10)

    assert len(backend) == 1


async def test_namespaces_do_not_collide():
    backend = InMemoryCache()
    first = CacheService(backend, namespace="a")
    second = CacheService(backend, namespace="b")

    await first.set_idempotency("session.cancel:abc", {"success": True}, ttl_seconds=10)

    assert (await second.check_idempotency("session.cancel:abc")).is_duplicate is False
    assert (await first.check_idempotency("session.cancel:abc")).is_duplicate is True


def test_hash_params_ignores_key_order():
    assert CacheService.hash_params({"a": 1, "b": 2}) == CacheService.hash_params({"b": 2, "a": 1})
    assert CacheService.hash_params({"a": 1}) != CacheService.hash_params({"a": 2})
