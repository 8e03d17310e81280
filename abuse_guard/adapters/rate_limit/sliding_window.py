"""Sliding-window rate limiter over a sorted set of request markers.

Each allowed request adds a marker scored by its timestamp. A check prunes
markers that fell out of the trailing window, counts the rest and compares
against the limit, so no burst across a window boundary can exceed it.
"""

from __future__ import annotations

import math
import secrets
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

# Sorted-set TTL as a multiple of the window, in case pruning is ever skipped
TTL_SAFETY_MULTIPLIER = 2


def build_marker_member(now: float) -> str:
    """Unique sorted-set member: millisecond timestamp plus a random suffix."""

    return f"{int(now * 1000)}-{secrets.token_hex(4)}"


class SlidingWindowLimiter(AbstractWindowLimiter):
    """Exact rolling count using sorted-set markers (O(log n) per operation)."""

    algorithm = Algorithm.SLIDING

    def __init__(
        self,
        store: AbstractCountingStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock

    async def _oldest_score(self, key: str) -> float | None:
        oldest = await self._store.zrange_with_scores(key, 0, 0)
        return oldest[0][1] if oldest else None

    async def check(self, key: str, config: RateLimitConfig, max_requests: int) -> RateLimitResult:
        now = self._clock()
        window = config.window_seconds

        await self._store.zremrangebyscore(key, float("-inf"), now - window)
        count = await self._store.zcard(key)

        if count >= max_requests:
            oldest = await self._oldest_score(key)
            reset_at = oldest + window if oldest is not None else now + window
            return build_blocked_result(now=now, limit=max_requests, reset_at=reset_at)

        await self._store.zadd(key, build_marker_member(now), now)
        await self._store.expire(key, window * TTL_SAFETY_MULTIPLIER)

        oldest = await self._oldest_score(key)
        reset_at = oldest + window if oldest is not None else now + window
        return build_allowed_result(
            limit=max_requests,
            remaining=max_requests - count - 1,
            reset_at=reset_at,
        )

    async def peek(self, key: str, config: RateLimitConfig, max_requests: int) -> RateLimitResult:
        now = self._clock()
        window = config.window_seconds
        # Strictly newer than the cutoff, matching what check() would keep.
        window_start = math.nextafter(now - window, math.inf)

        count = await self._store.zcount(key, window_start, float("inf"))
        live = await self._store.zrange_with_scores(key, 0, -1)
        live_scores = [score for _, score in live if score >= window_start]
        reset_at = live_scores[0] + window if live_scores else now + window

        if count < max_requests:
            return build_allowed_result(
                limit=max_requests,
                remaining=max_requests - count,
                reset_at=reset_at,
            )
        return build_blocked_result(now=now, limit=max_requests, reset_at=reset_at)
