"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- RateLimitExceededError → 429 with the rate limit body and headers
- Other AppError subclasses → appropriate HTTP status (400, 403, 503)
- Unexpected Exception → generic 500 (safety net)
- All generic error responses include request_id for tracing
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.errors import (
    AppError,
    AuthenticationAppError,
    RateLimitExceededError,
    StoreAppError,
)
from app.core.logging import get_request_id
from app.schemas.rate_limit import RateLimitExceededResponse

logger = logging.getLogger(__name__)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    """Render a denied request as 429 Too Many Requests.

    The body is ``{error, retryAfter, limit, windowSeconds}`` and the
    response carries the ``X-RateLimit-*`` and ``Retry-After`` headers
    computed by the enforcer. The violation itself is logged by the
    enforcer, not here.

    Args:
        request: FastAPI request object.
        exc: RateLimitExceededError raised by the rate limit dependency.

    Returns:
        JSONResponse with status 429.
    """
    body = RateLimitExceededResponse(
        error=exc.message,
        retry_after=exc.retry_after,
        limit=exc.limit,
        window_seconds=exc.window_seconds,
    )
    return JSONResponse(
        status_code=429,
        content=body.model_dump(by_alias=True),
        headers=exc.headers,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to appropriate HTTP status codes:
    - ValidationAppError → 400 Bad Request (client fault)
    - AuthenticationAppError → 403 Forbidden (authorization fault)
    - StoreAppError → 503 Service Unavailable (store unreachable)

    All responses include:
    - error.code: Machine-readable error code
    - error.message: Human-readable message
    - error.request_id: For distributed tracing
    - error.details: Optional structured context

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = 400  # Default: client error
    if isinstance(exc, AuthenticationAppError):
        status_code = 403
    elif isinstance(exc, StoreAppError):
        status_code = 503

    logger.warning(
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

    # Include details only if present (optional structured context)
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic
    message. No stack traces reach the client.

    Args:
        request: FastAPI request object.
        exc: Exception instance (unexpected).

    Returns:
        JSONResponse with generic error.
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

    Must be called during app initialization. Starlette picks the handler
    of the most specific exception class, so RateLimitExceededError is
    rendered by its own handler even though it is an AppError.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(RateLimitExceededError)(rate_limit_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
