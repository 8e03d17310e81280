from __future__ import annotations

from abuse_guard.api.routes.health import router as health_router
from abuse_guard.api.routes.rate_limits import admin_router as rate_limit_admin_router
from abuse_guard.api.routes.rate_limits import router as rate_limit_router

__all__ = ["health_router", "rate_limit_admin_router", "rate_limit_router"]
