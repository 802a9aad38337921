"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- AppError subclasses -> status code + headers from ERROR_STATUS
- Unexpected Exception -> generic 500 (safety net)
- All responses include request_id for distributed tracing

``build_error_response`` is shared with the governance pipeline, whose
stages run outside FastAPI's exception handling.
"""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.errors import (
    AppError,
    NotFoundAppError,
    PreconditionFailedError,
    QuotaExceededError,
    StorageAppError,
    StorageTimeoutError,
    UnsupportedVersionError,
    ValidationAppError,
)
from app.core.logging import get_request_id

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins
ERROR_STATUS: tuple[tuple[type[AppError], int], ...] = (
    (ValidationAppError, 400),
    (UnsupportedVersionError, 400),
    (NotFoundAppError, 404),
    (PreconditionFailedError, 412),
    (QuotaExceededError, 429),
    (StorageTimeoutError, 503),
    (StorageAppError, 500),
)

# Seconds a client should wait before retrying a storage timeout
STORAGE_RETRY_AFTER_SECONDS = 1


def status_for(exc: AppError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


def _headers_for(exc: AppError) -> dict[str, str]:
    details = exc.details or {}
    headers: dict[str, str] = {}
    if isinstance(exc, QuotaExceededError) and details.get("retry_after") is not None:
        headers["Retry-After"] = str(details["retry_after"])
    elif isinstance(exc, StorageTimeoutError):
        headers["Retry-After"] = str(STORAGE_RETRY_AFTER_SECONDS)
    elif isinstance(exc, UnsupportedVersionError) and details.get("supported_versions"):
        headers["api-supported-versions"] = ", ".join(details["supported_versions"])
    return headers


def build_error_response(
    exc: AppError,
    *,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render a domain error with the shared error envelope.

    Args:
        exc: AppError instance (or subclass).
        headers: Extra response headers (e.g., X-RateLimit-*).

    Returns:
        JSONResponse with status code, headers and ``{"error": {...}}`` body.
    """

    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    response_headers = _headers_for(exc)
    if headers:
        response_headers.update(headers)

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=response_headers or None,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors raised by routes and dependencies."""
    return build_error_response(exc)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic
    message, so no implementation details leak to clients.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
        exc_info=exc,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app.

    Must be called during app initialization, before route registration.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
