from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from abuse_guard.core.errors import StoreUnavailableError
from abuse_guard.core.rate_limit import get_rate_limit_engine
from abuse_guard.services.rate_limit_engine import RateLimitEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(
    engine: Annotated[RateLimitEngine, Depends(get_rate_limit_engine)],
) -> dict:
    """Health check endpoint.

    The service reports ``ok`` even when the counting store is down, because
    the limiter fails open; the ``store`` field tells operators whether limits
    are currently enforced.

    Returns:
        dict: ``status`` plus ``store`` set to "ok" or "unavailable".
    """

    try:
        store_ok = await engine.store.ping()
    except StoreUnavailableError as exc:
        logger.warning("health.store_unavailable", extra={"error_code": exc.code})
        store_ok = False

    return {
        "status": "ok",
        "store": "ok" if store_ok else "unavailable",
        "bypass": engine.config.bypass,
    }
