"""Tests for the fixed and sliding window algorithms."""

import pytest

from abuse_guard.adapters.rate_limit.base import (
    Algorithm,
    RateLimitConfig,
    build_blocked_result,
)
from abuse_guard.adapters.rate_limit.fixed_window import FixedWindowLimiter
from abuse_guard.adapters.rate_limit.sliding_window import SlidingWindowLimiter
from abuse_guard.core.errors import ValidationAppError

STATUS = RateLimitConfig("status", 3, 60, Algorithm.FIXED)
STORE_KEY = RateLimitConfig("store-key", 3, 60, Algorithm.SLIDING)


class TestRateLimitConfig:
    @pytest.mark.parametrize(
        ("kwargs", "code"),
        [
            ({"endpoint_name": "", "max_requests": 1, "window_seconds": 1}, "rate_limit_invalid_endpoint"),
            ({"endpoint_name": "a:b", "max_requests": 1, "window_seconds": 1}, "rate_limit_invalid_endpoint"),
            ({"endpoint_name": "x", "max_requests": 0, "window_seconds": 1}, "rate_limit_invalid_max_requests"),
            ({"endpoint_name": "x", "max_requests": 1, "window_seconds": 0}, "rate_limit_invalid_window"),
        ],
    )
    def test_invalid_config_rejected(self, kwargs, code) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            RateLimitConfig(**kwargs)

        assert exc_info.value.code == code

    def test_algorithm_accepts_string(self) -> None:
        assert RateLimitConfig("x", 1, 1, "fixed").algorithm is Algorithm.FIXED


def test_blocked_result_retry_after_is_at_least_one() -> None:
    result = build_blocked_result(now=100.0, limit=3, reset_at=100.2)

    assert result.retry_after_seconds == 1
    assert result.headers()["Retry-After"] == "1"


class TestFixedWindow:
    @pytest.mark.asyncio
    async def test_allows_limit_then_denies(self, store, clock) -> None:
        limiter = FixedWindowLimiter(store, clock=clock)

        results = [await limiter.check("k", STATUS, 3) for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert 0 < results[3].retry_after_seconds <= 60

    @pytest.mark.asyncio
    async def test_window_resets_after_ttl(self, store, clock) -> None:
        limiter = FixedWindowLimiter(store, clock=clock)
        for _ in range(4):
            await limiter.check("k", STATUS, 3)

        clock.advance(60)
        result = await limiter.check("k", STATUS, 3)

        assert result.allowed is True
        assert result.remaining == 2

    @pytest.mark.asyncio
    async def test_reset_at_follows_first_request(self, store, clock) -> None:
        limiter = FixedWindowLimiter(store, clock=clock)
        first = await limiter.check("k", STATUS, 3)

        clock.advance(20)
        second = await limiter.check("k", STATUS, 3)

        assert second.reset_at == first.reset_at

    @pytest.mark.asyncio
    async def test_peek_does_not_count(self, store, clock) -> None:
        limiter = FixedWindowLimiter(store, clock=clock)
        await limiter.check("k", STATUS, 3)

        peeked = [await limiter.peek("k", STATUS, 3) for _ in range(5)]

        assert all(p.allowed for p in peeked)
        assert peeked[-1].remaining == 2
        assert await store.get("k") == "1"


class TestSlidingWindow:
    @pytest.mark.asyncio
    async def test_allows_limit_then_denies_until_oldest_expires(self, store, clock) -> None:
        limiter = SlidingWindowLimiter(store, clock=clock)

        allowed = []
        for _ in range(3):
            allowed.append((await limiter.check("k", STORE_KEY, 3)).allowed)
            clock.advance(1)
        denied = await limiter.check("k", STORE_KEY, 3)

        assert allowed == [True, True, True]
        assert denied.allowed is False
        assert denied.retry_after_seconds == 57

        clock.advance(57)
        assert (await limiter.check("k", STORE_KEY, 3)).allowed is True

    @pytest.mark.asyncio
    async def test_denials_do_not_add_markers(self, store, clock) -> None:
        limiter = SlidingWindowLimiter(store, clock=clock)
        for _ in range(6):
            await limiter.check("k", STORE_KEY, 3)

        assert await store.zcard("k") == 3

    @pytest.mark.asyncio
    async def test_no_boundary_burst(self, store, clock) -> None:
        """Requests at the end of one minute still count at the start of the next."""
        limiter = SlidingWindowLimiter(store, clock=clock)
        clock.advance(59)
        for _ in range(3):
            assert (await limiter.check("k", STORE_KEY, 3)).allowed

        clock.advance(2)

        assert (await limiter.check("k", STORE_KEY, 3)).allowed is False

    @pytest.mark.asyncio
    async def test_trailing_window_never_exceeds_limit(self, store, clock) -> None:
        limiter = SlidingWindowLimiter(store, clock=clock)
        allowed_at: list[float] = []

        for _ in range(240):
            if (await limiter.check("k", STORE_KEY, 3)).allowed:
                allowed_at.append(clock())
            clock.advance(1.5)

        for t in allowed_at:
            in_window = [a for a in allowed_at if t - 60 < a <= t]
            assert len(in_window) <= 3

    @pytest.mark.asyncio
    async def test_peek_reports_remaining_without_counting(self, store, clock) -> None:
        limiter = SlidingWindowLimiter(store, clock=clock)
        await limiter.check("k", STORE_KEY, 3)
        await limiter.check("k", STORE_KEY, 3)

        peeked = await limiter.peek("k", STORE_KEY, 3)

        assert peeked.allowed is True
        assert peeked.remaining == 1
        assert await store.zcard("k") == 2

    @pytest.mark.asyncio
    async def test_peek_ignores_markers_outside_window(self, store, clock) -> None:
        limiter = SlidingWindowLimiter(store, clock=clock)
        for _ in range(3):
            await limiter.check("k", STORE_KEY, 3)

        clock.advance(60)
        peeked = await limiter.peek("k", STORE_KEY, 3)

        assert peeked.allowed is True
        assert peeked.remaining == 3
