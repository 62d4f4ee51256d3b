"""Global exception handlers for consistent error responses.

Design:
- RateLimitExceededError → 429 with the fixed rate limit body and headers
- Other AppError subclasses → appropriate HTTP status (400, 403, 503)
- Unexpected Exception → generic 500 (safety net)
- Error payloads include request_id for tracing
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.errors import (
    AppError,
    AuthenticationAppError,
    RateLimitBackendUnavailableError,
    RateLimitExceededError,
)
from app.core.logging import get_request_id

logger = logging.getLogger(__name__)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    """Render a rejected request as HTTP 429.

    The body is a flat ``{"error": message}`` object; usage headers computed
    by the guard (X-RateLimit-*, Retry-After) are passed through as-is.
    """
    return JSONResponse(
        status_code=429,
        content={"error": exc.message},
        headers=exc.headers or None,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to appropriate HTTP status codes:
    - AuthenticationAppError → 403 Forbidden
    - RateLimitBackendUnavailableError → 503 Service Unavailable
    - anything else → 400 Bad Request

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = 400
    if isinstance(exc, AuthenticationAppError):
        status_code = 403
    elif isinstance(exc, RateLimitBackendUnavailableError):
        status_code = 503

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors.

    Logs the error type and path; the client only sees a generic message.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
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
    """Register all exception handlers with FastAPI app.

    Starlette resolves handlers by walking the exception's MRO, so the
    RateLimitExceededError handler wins over the generic AppError one.
    """
    app.exception_handler(RateLimitExceededError)(rate_limit_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
