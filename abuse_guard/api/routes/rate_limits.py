from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from abuse_guard.core.auth import verify_admin_api_key
from abuse_guard.core.errors import ValidationAppError
from abuse_guard.core.identity import ClientRequest
from abuse_guard.core.rate_limit import get_rate_limit_engine
from abuse_guard.schemas.rate_limit import (
    RateLimitStats,
    RateLimitStatusResponse,
    ResetRateLimitRequest,
    ResetRateLimitResponse,
    ViolationListResponse,
)
from abuse_guard.services.endpoint_limits import get_endpoint_limit
from abuse_guard.services.rate_limit_engine import RateLimitEngine

router = APIRouter(tags=["Rate Limits"])

admin_router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(verify_admin_api_key)],
)

EngineDep = Annotated[RateLimitEngine, Depends(get_rate_limit_engine)]


@router.get("/rate-limits/{endpoint_name}/status", response_model=RateLimitStatusResponse)
async def rate_limit_status(
    endpoint_name: str,
    request: Request,
    engine: EngineDep,
    identifier: Annotated[
        str | None,
        Query(description="Explicit identifier (wallet or email); defaults to the caller's IP"),
    ] = None,
) -> RateLimitStatusResponse:
    """Report the caller's standing against a named endpoint limit.

    Read-only: does not count a request or record violations.

    Raises:
        HTTPException: 404 if the endpoint has no configured limit.
    """
    try:
        config = get_endpoint_limit(endpoint_name)
    except ValidationAppError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc

    if identifier:
        config = config.with_identifier(identifier)

    result = await engine.get_rate_limit_status(ClientRequest.from_request(request), config)
    return RateLimitStatusResponse.from_result(config.endpoint_name, result)


@admin_router.post("/rate-limits/reset", response_model=ResetRateLimitResponse)
async def reset_rate_limit(payload: ResetRateLimitRequest, engine: EngineDep) -> ResetRateLimitResponse:
    """Clear a client's counter, tightening and violation counters on one endpoint."""

    reset = await engine.reset_rate_limit(payload.endpoint_name, payload.identifier, payload.algorithm)
    return ResetRateLimitResponse(
        reset=reset,
        endpoint_name=payload.endpoint_name,
        hashed_client_id=engine.hash_client(payload.identifier),
    )


@admin_router.get("/rate-limits/violations", response_model=ViolationListResponse)
async def list_violations(
    engine: EngineDep,
    endpoint_name: str | None = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> ViolationListResponse:
    violations = await engine.get_rate_limit_violations(endpoint_name, limit)
    return ViolationListResponse(violations=violations, count=len(violations))


@admin_router.get("/rate-limits/stats", response_model=RateLimitStats)
async def rate_limit_stats(engine: EngineDep, endpoint_name: str | None = None) -> RateLimitStats:
    return await engine.get_rate_limit_stats(endpoint_name)
