"""Fixed-window rate limiter over the counting store.

The window starts with the first request for a key and ends when the key's
TTL expires. Denied requests still increment the counter so a client that
keeps hammering the endpoint cannot shift its window forward.
"""

from __future__ import annotations

import time
from typing import Callable

from abuse_guard.adapters.rate_limit.base import (
    AbstractWindowLimiter,
    Algorithm,
    RateLimitConfig,
    RateLimitResult,
    build_allowed_result,
    build_blocked_result,
)
from abuse_guard.adapters.store.base import AbstractCountingStore


class FixedWindowLimiter(AbstractWindowLimiter):
    """Atomic increment-with-TTL counter.

    Concurrency: only the increment that creates the key sets its TTL. Two
    requests racing to be first both land their increments atomically, and
    exactly one of them sees ``count == 1``, so the window is neither lost
    nor doubled.
    """

    algorithm = Algorithm.FIXED

    def __init__(
        self,
        store: AbstractCountingStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock

    async def check(self, key: str, config: RateLimitConfig, max_requests: int) -> RateLimitResult:
        count, ttl_seconds = await self._store.increment_with_ttl(key, config.window_seconds)
        now = self._clock()
        # TTL read from the store, not computed locally, so every concurrent
        # caller reports the same reset time.
        reset_at = now + ttl_seconds

        if count <= max_requests:
            return build_allowed_result(
                limit=max_requests,
                remaining=max_requests - count,
                reset_at=reset_at,
            )
        return build_blocked_result(now=now, limit=max_requests, reset_at=reset_at)

    async def peek(self, key: str, config: RateLimitConfig, max_requests: int) -> RateLimitResult:
        raw = await self._store.get(key)
        count = int(raw) if raw else 0
        ttl_seconds = await self._store.ttl(key)
        now = self._clock()
        reset_at = now + (ttl_seconds if ttl_seconds > 0 else config.window_seconds)

        if count < max_requests:
            return build_allowed_result(
                limit=max_requests,
                remaining=max_requests - count,
                reset_at=reset_at,
            )
        return build_blocked_result(now=now, limit=max_requests, reset_at=reset_at)
