"""Pydantic schemas for persisted limiter state and rate limit API payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List

from pydantic import BaseModel, Field

from abuse_guard.adapters.rate_limit.base import Algorithm, RateLimitResult
from abuse_guard.core.identity import FactorType


class ViolationRecord(BaseModel):
    """A denied attempt, appended to the endpoint's capped violation log."""

    timestamp: datetime = Field(..., description="When the denial happened (UTC).")
    endpoint_name: str = Field(..., description="Endpoint the request was denied on.")
    hashed_client_id: str = Field(..., description="Hash of the identifier that was limited.")
    factor: FactorType = Field(FactorType.IP, description="Identity axis that was limited.")
    ip: str | None = Field(
        default=None,
        description="Hash of the client IP; raw addresses are never stored.",
    )
    user_agent: str | None = Field(default=None, description="Truncated User-Agent header.")


class AdaptiveState(BaseModel):
    """Active tightening for one (endpoint, client) pair."""

    endpoint_name: str
    hashed_client_id: str
    applied_at: datetime
    expires_at: datetime
    factor: float = Field(..., gt=0, le=1)


class GlobalTighteningState(BaseModel):
    """System-wide clamp applied while violations/minute exceed the threshold."""

    applied_at: datetime
    expires_at: datetime
    violations_observed: int = Field(..., ge=0)
    factor: float = Field(..., gt=0, le=1)


class EndpointKeyCount(BaseModel):
    endpoint_name: str
    keys: int


class RateLimitStats(BaseModel):
    """Aggregate counter-key statistics for admins."""

    total_keys: int = Field(0, description="Counter keys found.")
    active_keys: int = Field(0, description="Counter keys with usage in the current window.")
    algorithm_counts: Dict[str, int] = Field(
        default_factory=lambda: {algorithm.value: 0 for algorithm in Algorithm},
        description="Counter keys per algorithm.",
    )
    top_endpoints: List[EndpointKeyCount] = Field(
        default_factory=list,
        description="Endpoints with the most counter keys, descending.",
    )


class RateLimitStatusResponse(BaseModel):
    """Serializable view of a RateLimitResult."""

    endpoint_name: str
    allowed: bool
    remaining: int
    limit: int
    reset_at: datetime
    retry_after_seconds: int | None = None
    requires_captcha: bool = False
    captcha_provider: str | None = None
    adaptive_limit_applied: bool = False

    @classmethod
    def from_result(cls, endpoint_name: str, result: RateLimitResult) -> "RateLimitStatusResponse":
        return cls(
            endpoint_name=endpoint_name,
            allowed=result.allowed,
            remaining=result.remaining,
            limit=result.limit,
            reset_at=result.reset_at,
            retry_after_seconds=result.retry_after_seconds,
            requires_captcha=result.requires_captcha,
            captcha_provider=result.captcha_provider,
            adaptive_limit_applied=result.adaptive_limit_applied,
        )


class ResetRateLimitRequest(BaseModel):
    """Admin request to clear a client's counter on one endpoint."""

    endpoint_name: str = Field(..., min_length=1)
    identifier: str = Field(..., min_length=1, description="Raw identifier (IP, wallet, email).")
    algorithm: Algorithm = Field(Algorithm.SLIDING)


class ResetRateLimitResponse(BaseModel):
    reset: bool
    endpoint_name: str
    hashed_client_id: str


class ViolationListResponse(BaseModel):
    violations: List[ViolationRecord] = Field(default_factory=list)
    count: int = 0
