"""FastAPI exception handlers.

Every error leaves the API as ``{"error": {"code", "message", "request_id",
["details"]}}``. Domain errors keep their code and message; anything else
becomes a generic 500 so internals never reach the client.

Note that rate limit checks fail open and never raise here. Only routes that
must not fail open (admin operations) can surface ``StoreUnavailableError``.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from abuse_guard.core.errors import AppError, AuthenticationAppError, StoreUnavailableError
from abuse_guard.core.logging import get_request_id

logger = logging.getLogger(__name__)

# Most specific first; unlisted AppError subclasses are client errors
_STATUS_BY_ERROR: tuple[tuple[type[AppError], int], ...] = (
    (AuthenticationAppError, 403),
    (StoreUnavailableError, 503),
)


def status_for(exc: AppError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


def _error_response(status_code: int, code: str, message: str, details=None) -> JSONResponse:
    body = {"code": code, "message": message, "request_id": get_request_id()}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"error": body})


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an ``AppError`` with the status code of its type."""

    status_code = status_for(exc)
    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "status_code": status_code,
            "route": request.url.path,
            "has_details": bool(exc.details),
        },
    )
    return _error_response(status_code, exc.code, exc.message, exc.details)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler: log the failure type, return a generic 500."""

    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "route": request.url.path,
            "method": request.method,
        },
    )
    return _error_response(
        500,
        "internal_server_error",
        "An unexpected error occurred. Please try again later.",
    )


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
