"""Rate limiting dependency for FastAPI routes.

This module wires the rate limit engine into the HTTP layer.

Design goals:
- Minimal coupling: protected routes depend on a dependency function only.
- Swap-friendly: the counting store backend is chosen by configuration.
- Safe defaults: store failures fail open; the bypass switch skips
  enforcement entirely for local development.

Usage:
    @router.post(
        "/wallet/store-key",
        dependencies=[Depends(enforce_rate_limit(RATE_LIMITS["store_key"],
                                                 identifier_header="X-Wallet-Address"))],
    )
"""

from __future__ import annotations

import logging
from typing import Annotated, Awaitable, Callable

from fastapi import Depends, HTTPException, Request, Response, status

from abuse_guard.adapters.alerts.factory import create_alert_sink
from abuse_guard.adapters.rate_limit.base import RateLimitConfig, RateLimitResult
from abuse_guard.adapters.store.factory import create_counting_store
from abuse_guard.core.config import settings
from abuse_guard.core.identity import ClientRequest, derive_device_fingerprint
from abuse_guard.services.alert_channel import AlertChannel
from abuse_guard.services.engine_config import EngineConfig
from abuse_guard.services.rate_limit_engine import RateLimitEngine, SecondaryIdentifiers

logger = logging.getLogger(__name__)

WALLET_HEADER = "X-Wallet-Address"
EMAIL_HEADER = "X-User-Email"

_engine: RateLimitEngine | None = None
_alert_channel: AlertChannel | None = None


def get_alert_channel() -> AlertChannel:
    """Return the process-wide alert channel, creating it on first use."""

    global _alert_channel

    if _alert_channel is None:
        _alert_channel = AlertChannel(
            create_alert_sink(settings.alert),
            max_size=settings.alert.queue_max_size,
        )
    return _alert_channel


def get_rate_limit_engine() -> RateLimitEngine:
    """Return a process-wide rate limit engine instance.

    The instance is cached in-module so in-memory counters survive across
    requests and the store connection pool is shared.

    Returns:
        RateLimitEngine: Configured engine instance.
    """

    global _engine

    if _engine is None:
        _engine = RateLimitEngine(
            create_counting_store(settings.store),
            EngineConfig.from_settings(settings.rate_limit),
            alerts=get_alert_channel(),
        )
    return _engine


def set_rate_limit_engine(engine: RateLimitEngine | None) -> None:
    """Replace (or clear) the cached engine, mainly for tests."""

    global _engine
    _engine = engine


async def shutdown_rate_limiting() -> None:
    """Finish pending violation tracking, stop the alert worker and release store connections."""

    global _engine, _alert_channel

    if _engine is not None:
        await _engine.drain_tracking()
    if _alert_channel is not None:
        await _alert_channel.stop()
        _alert_channel = None
    if _engine is not None:
        await _engine.store.close()
        _engine = None


def build_rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Response headers for a result, honoring the header toggle."""

    headers: dict[str, str] = {}
    if settings.app.include_rate_limit_headers:
        headers.update(result.headers())
    elif not result.allowed:
        headers["Retry-After"] = str(result.retry_after_seconds or 0)

    if result.requires_captcha:
        headers["X-Captcha-Required"] = "true"
        if result.captcha_provider:
            headers["X-Captcha-Provider"] = result.captcha_provider
    return headers


def enforce_rate_limit(
    config: RateLimitConfig,
    *,
    identifier_header: str | None = None,
    multi_factor: bool = False,
) -> Callable[..., Awaitable[RateLimitResult]]:
    """Build a FastAPI dependency enforcing ``config``.

    Args:
        config: Endpoint limit to enforce.
        identifier_header: Optional header carrying an explicit identifier
            (e.g. ``X-Wallet-Address``) used instead of the client IP.
        multi_factor: Also limit the wallet/email headers and the device
            fingerprint, blocking if any factor is exhausted.

    Returns:
        Async dependency that stores the result on ``request.state.rate_limit``,
        sets X-RateLimit-* headers and raises HTTP 429 when denied.
    """

    async def _dependency(
        request: Request,
        response: Response,
        engine: Annotated[RateLimitEngine, Depends(get_rate_limit_engine)],
    ) -> RateLimitResult:
        client = ClientRequest.from_request(request)

        explicit = client.header(identifier_header) if identifier_header else None
        effective = config.with_identifier(explicit) if explicit else config

        if multi_factor:
            secondary = SecondaryIdentifiers(
                wallet_address=client.header(WALLET_HEADER),
                email=client.header(EMAIL_HEADER),
                device_fingerprint=derive_device_fingerprint(client),
            )
            result = await engine.check_multi_factor_rate_limit(client, effective, secondary)
        else:
            result = await engine.check_rate_limit(client, effective)

        request.state.rate_limit = result
        headers = build_rate_limit_headers(result)

        if result.allowed:
            response.headers.update(headers)
            return result

        logger.info(
            "rate_limit.rejected",
            extra={
                "endpoint": config.endpoint_name,
                "route": request.url.path,
                "retry_after_s": result.retry_after_seconds,
            },
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "message": "Rate limit exceeded. Try again later.",
                "reset_at": result.reset_at.isoformat(),
                "retry_after": result.retry_after_seconds,
                "requires_captcha": result.requires_captcha,
            },
            headers=headers,
        )

    return _dependency
