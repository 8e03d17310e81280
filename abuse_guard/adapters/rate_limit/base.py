"""Rate limit types and window limiter interface.

Window limiters depend on the counting store abstraction (not a concrete
backend) so the same algorithm runs against Redis in production and the
in-memory store in tests.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum

from abuse_guard.core.errors import ValidationAppError


class Algorithm(str, Enum):
    """Counting algorithm used for an endpoint."""

    FIXED = "fixed"
    SLIDING = "sliding"


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-endpoint limit supplied by the caller on every check.

    Attributes:
        endpoint_name: Logical endpoint the counter belongs to.
        max_requests: Maximum requests allowed per window.
        window_seconds: Window length in seconds.
        algorithm: Fixed or sliding window.
        identifier: Optional explicit identifier (wallet address, email)
            used instead of the client IP.

    Raises:
        ValidationAppError: If any field is invalid.
    """

    endpoint_name: str
    max_requests: int
    window_seconds: int
    algorithm: Algorithm = Algorithm.SLIDING
    identifier: str | None = None

    def __post_init__(self) -> None:
        if not self.endpoint_name or ":" in self.endpoint_name:
            raise ValidationAppError(
                code="rate_limit_invalid_endpoint",
                message="endpoint_name must be a non-empty string without ':'",
                details={"field": "endpoint_name"},
            )
        if self.max_requests < 1:
            raise ValidationAppError(
                code="rate_limit_invalid_max_requests",
                message="max_requests must be >= 1",
                details={"field": "max_requests", "min_value": 1, "actual_value": self.max_requests},
            )
        if self.window_seconds < 1:
            raise ValidationAppError(
                code="rate_limit_invalid_window",
                message="window_seconds must be >= 1",
                details={"field": "window_seconds", "min_value": 1, "actual_value": self.window_seconds},
            )
        # Accept plain strings ("fixed"/"sliding") from callers and settings.
        object.__setattr__(self, "algorithm", Algorithm(self.algorithm))

    def with_limit(self, max_requests: int) -> "RateLimitConfig":
        return replace(self, max_requests=max_requests)

    def with_identifier(self, identifier: str | None) -> "RateLimitConfig":
        return replace(self, identifier=identifier)


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        remaining: Remaining requests in the current window (0 when blocked).
        limit: Effective max requests per window for this check.
        reset_at: UTC time when a slot frees up / the window resets.
        retry_after_seconds: Suggested wait time in seconds when blocked.
        requires_captcha: Client must pass a CAPTCHA challenge.
        captcha_provider: Provider the challenge should be issued with.
        adaptive_limit_applied: A tightened limit was in force for this check.
            Set for per-client adaptive tightening and for system-wide global
            tightening alike; the two are not reported separately. Also set
            when an active state did not lower the limit, such as a max of 1.
    """

    allowed: bool
    remaining: int
    limit: int
    reset_at: datetime
    retry_after_seconds: int | None = None
    requires_captcha: bool = False
    captcha_provider: str | None = None
    adaptive_limit_applied: bool = False

    def headers(self) -> dict[str, str]:
        """Response headers callers are expected to surface."""

        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at.isoformat(),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds or 0)
        return headers


def to_datetime(epoch_seconds: float) -> datetime:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)


def build_allowed_result(*, limit: int, remaining: int, reset_at: float) -> RateLimitResult:
    """Build a RateLimitResult for an allowed request."""
    return RateLimitResult(
        allowed=True,
        remaining=max(0, remaining),
        limit=limit,
        reset_at=to_datetime(reset_at),
    )


def build_blocked_result(*, now: float, limit: int, reset_at: float) -> RateLimitResult:
    """Build a RateLimitResult for a blocked request.

    ``retry_after_seconds`` is never below 1 so clients always back off.
    """
    retry_after = max(1, int(math.ceil(reset_at - now)))
    return RateLimitResult(
        allowed=False,
        remaining=0,
        limit=limit,
        reset_at=to_datetime(reset_at),
        retry_after_seconds=retry_after,
    )


class AbstractWindowLimiter(ABC):
    """Interface for window counting algorithms."""

    algorithm: Algorithm

    @abstractmethod
    async def check(self, key: str, config: RateLimitConfig, max_requests: int) -> RateLimitResult:
        """Count one request against ``key`` and decide whether it is allowed.

        Args:
            key: Counter key (already namespaced and hashed).
            config: Endpoint configuration (window length).
            max_requests: Effective limit, possibly tightened.

        Returns:
            RateLimitResult describing whether it was allowed.

        Raises:
            StoreUnavailableError: If the counting store fails.
        """
        raise NotImplementedError

    @abstractmethod
    async def peek(self, key: str, config: RateLimitConfig, max_requests: int) -> RateLimitResult:
        """Report the current state for ``key`` without counting a request."""
        raise NotImplementedError
