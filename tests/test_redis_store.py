"""Unit tests for RedisCountingStore using fakeredis to avoid a real Redis."""

import asyncio

import pytest

pytest.importorskip("fakeredis", reason="fakeredis is required for Redis store unit tests")
import fakeredis
from redis.exceptions import ConnectionError as RedisConnectionError

from abuse_guard.adapters.rate_limit.base import Algorithm, RateLimitConfig
from abuse_guard.adapters.rate_limit.sliding_window import SlidingWindowLimiter
from abuse_guard.adapters.store.factory import create_counting_store
from abuse_guard.adapters.store.in_memory import InMemoryCountingStore
from abuse_guard.adapters.store.redis_store import RedisCountingStore
from abuse_guard.core.config import StoreSettings
from abuse_guard.core.errors import StoreUnavailableError, ValidationAppError


def _store() -> RedisCountingStore:
    return RedisCountingStore(fakeredis.aioredis.FakeRedis(decode_responses=True))


class _BrokenClient:
    async def incr(self, key):
        raise RedisConnectionError("Connection refused")


class _SlowClient:
    async def get(self, key):
        await asyncio.sleep(1)


@pytest.mark.asyncio
async def test_increment_with_ttl_sets_expiry_once() -> None:
    store = _store()

    count, ttl = await store.increment_with_ttl("rate_limit:fixed:status:abc", 60)
    assert (count, ttl) == (1, 60)

    count, ttl = await store.increment_with_ttl("rate_limit:fixed:status:abc", 60)
    assert count == 2
    assert 0 < ttl <= 60


@pytest.mark.asyncio
async def test_sorted_set_round_trip() -> None:
    store = _store()
    await store.zadd("z", "a", 1.0)
    await store.zadd("z", "b", 2.0)
    await store.zadd("z", "c", 3.0)

    assert await store.zcard("z") == 3
    assert await store.zcount("z", 2.0, float("inf")) == 2
    assert await store.zrange_with_scores("z", 0, 0) == [("a", 1.0)]
    assert await store.zremrangebyscore("z", float("-inf"), 2.0) == 2
    assert await store.zcard("z") == 1


@pytest.mark.asyncio
async def test_set_if_absent_and_delete() -> None:
    store = _store()

    assert await store.set_if_absent("flag", "1", 60) is True
    assert await store.set_if_absent("flag", "2", 60) is False
    assert await store.get("flag") == "1"
    assert await store.delete("flag", "missing") == 1
    assert await store.delete() == 0


@pytest.mark.asyncio
async def test_push_capped_trims_and_sets_ttl() -> None:
    store = _store()
    for i in range(4):
        await store.push_capped("log", str(i), 2, 60)

    assert await store.lrange("log", 0, -1) == ["3", "2"]
    assert 0 < await store.ttl("log") <= 60


@pytest.mark.asyncio
async def test_scan_keys_respects_pattern_and_limit() -> None:
    store = _store()
    for i in range(5):
        await store.set(f"rate_limit:sliding:store-key:{i}", "x", 60)
    await store.set("rate_limit:fixed:status:1", "x", 60)

    found = await store.scan_keys("rate_limit:sliding:*:*")
    limited = await store.scan_keys("rate_limit:sliding:*:*", limit=2)

    assert len(found) == 5
    assert len(limited) == 2


@pytest.mark.asyncio
async def test_sliding_window_runs_on_redis() -> None:
    store = _store()
    limiter = SlidingWindowLimiter(store)
    config = RateLimitConfig("store-key", 2, 60, Algorithm.SLIDING)

    results = [await limiter.check("rate_limit:sliding:store-key:abc", config, 2) for _ in range(3)]

    assert [r.allowed for r in results] == [True, True, False]
    assert 0 < await store.ttl("rate_limit:sliding:store-key:abc") <= 120


@pytest.mark.asyncio
async def test_connection_errors_become_store_unavailable() -> None:
    store = RedisCountingStore(_BrokenClient())

    with pytest.raises(StoreUnavailableError) as exc_info:
        await store.incr("k")

    assert exc_info.value.code == "store_unavailable"
    assert exc_info.value.details["backend"] == "redis"


@pytest.mark.asyncio
async def test_timeouts_become_store_unavailable() -> None:
    store = RedisCountingStore(_SlowClient(), timeout_seconds=0.05)

    with pytest.raises(StoreUnavailableError) as exc_info:
        await store.get("k")

    assert exc_info.value.details["operation"] == "get"


def test_factory_builds_configured_backend() -> None:
    assert isinstance(create_counting_store(StoreSettings(backend="memory")), InMemoryCountingStore)
    assert isinstance(
        create_counting_store(StoreSettings(backend="redis", redis_url="redis://localhost:6379/0")),
        RedisCountingStore,
    )


def test_factory_rejects_unknown_backend() -> None:
    with pytest.raises(ValidationAppError) as exc_info:
        create_counting_store(StoreSettings(backend="memcached"))

    assert exc_info.value.code == "store_unknown_backend"
