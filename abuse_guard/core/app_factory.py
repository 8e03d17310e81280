"""Application factory for the FastAPI app.

Centralizes app construction (metadata, lifespan, middleware, handlers,
routers) to keep ``main`` trivial and make tests build fresh apps.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from abuse_guard.api.routes import health_router, rate_limit_admin_router, rate_limit_router
from abuse_guard.core.config import settings
from abuse_guard.core.exception_handlers import setup_exception_handlers
from abuse_guard.core.logging import configure_logging
from abuse_guard.core.middleware import request_id_middleware
from abuse_guard.core.rate_limit import get_alert_channel, shutdown_rate_limiting

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the alert worker on startup; flush alerts and close the store on shutdown."""

    await get_alert_channel().start()
    if settings.rate_limit.bypass:
        logger.warning("rate_limit.bypass_enabled", extra={"app_env": settings.app_env})
    try:
        yield
    finally:
        await shutdown_rate_limiting()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Abuse Guard",
        description=(
            "Adaptive multi-factor rate limiting for security-sensitive wallet, "
            "payment and email endpoints: fixed and sliding windows, violation "
            "tracking, adaptive tightening and CAPTCHA escalation."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=lifespan,
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(rate_limit_router, prefix="/v1")
    app.include_router(rate_limit_admin_router, prefix="/v1")
    app.include_router(health_router)

    return app
