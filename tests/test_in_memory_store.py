"""Unit tests for the in-memory counting store."""

import threading
import asyncio

import pytest

from abuse_guard.adapters.store.base import TTL_MISSING, TTL_NO_EXPIRY
from abuse_guard.adapters.store.in_memory import InMemoryCountingStore


@pytest.mark.asyncio
async def test_increment_with_ttl_sets_ttl_only_on_first_increment(store, clock) -> None:
    assert await store.increment_with_ttl("k", 60) == (1, 60)

    clock.advance(20)
    count, ttl = await store.increment_with_ttl("k", 60)

    assert count == 2
    assert ttl == 40


@pytest.mark.asyncio
async def test_increment_with_ttl_restores_missing_ttl(store) -> None:
    await store.incr("k")
    assert await store.ttl("k") == TTL_NO_EXPIRY

    count, ttl = await store.increment_with_ttl("k", 30)

    assert count == 2
    assert ttl == 30
    assert await store.ttl("k") == 30


@pytest.mark.asyncio
async def test_keys_expire_lazily(store, clock) -> None:
    await store.set("flag", "1", 10)

    clock.advance(9)
    assert await store.get("flag") == "1"

    clock.advance(1)
    assert await store.get("flag") is None
    assert await store.ttl("flag") == TTL_MISSING


@pytest.mark.asyncio
async def test_set_if_absent_only_creates_once(store, clock) -> None:
    assert await store.set_if_absent("k", "first", 60) is True
    assert await store.set_if_absent("k", "second", 60) is False
    assert await store.get("k") == "first"

    clock.advance(61)
    assert await store.set_if_absent("k", "third", 60) is True


@pytest.mark.asyncio
async def test_sorted_set_operations(store) -> None:
    await store.zadd("z", "a", 10.0)
    await store.zadd("z", "b", 20.0)
    await store.zadd("z", "c", 30.0)

    assert await store.zcard("z") == 3
    assert await store.zcount("z", 15.0, 30.0) == 2
    assert await store.zrange_with_scores("z", 0, 0) == [("a", 10.0)]

    removed = await store.zremrangebyscore("z", float("-inf"), 20.0)

    assert removed == 2
    assert await store.zrange_with_scores("z", 0, -1) == [("c", 30.0)]


@pytest.mark.asyncio
async def test_push_capped_keeps_newest_entries(store) -> None:
    for i in range(5):
        await store.push_capped("log", f"entry-{i}", 3, 60)

    assert await store.lrange("log", 0, -1) == ["entry-4", "entry-3", "entry-2"]


@pytest.mark.asyncio
async def test_scan_keys_matches_glob_and_skips_expired(store, clock) -> None:
    await store.set("rate_limit:fixed:a:1", "1", 5)
    await store.set("rate_limit:fixed:b:2", "1", 60)
    await store.set("rate_limit:sliding:a:3", "1", 60)

    clock.advance(10)

    assert await store.scan_keys("rate_limit:fixed:*") == ["rate_limit:fixed:b:2"]


@pytest.mark.asyncio
async def test_delete_reports_existing_keys(store) -> None:
    await store.set("a", "1", 60)

    assert await store.delete("a", "missing") == 1
    assert await store.get("a") is None


def test_concurrent_increments_are_not_lost() -> None:
    store = InMemoryCountingStore()
    total = 50

    def _worker() -> None:
        asyncio.run(store.incr("shared"))

    threads = [threading.Thread(target=_worker) for _ in range(total)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert asyncio.run(store.get("shared")) == str(total)
