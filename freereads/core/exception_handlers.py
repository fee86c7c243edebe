"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- AppError → status from its kind (401, 429, 500, ...)
- RequestValidationError → 400 validation
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing
"""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from freereads.core.errors import AppError, ErrorKind
from freereads.core.logging import get_request_id

logger = logging.getLogger(__name__)


def build_error_headers(exc: AppError) -> dict[str, str]:
    """Headers a client needs to react to the error.

    401 responses advertise the Bearer scheme; 429 responses carry
    Retry-After when the wait is known.
    """
    headers: dict[str, str] = {}
    status_code = exc.status_code
    if status_code == 401 and exc.kind is not ErrorKind.INVALID_CREDENTIALS:
        headers["WWW-Authenticate"] = "Bearer"
    elif status_code == 429 and exc.details:
        retry_after = exc.details.get("retry_after")
        if retry_after is not None:
            headers["Retry-After"] = str(retry_after)
    return headers


def build_error_response(exc: AppError) -> JSONResponse:
    """Render an AppError as the standard JSON error envelope.

    Shared by the exception handler and the security pipeline middleware,
    which terminates requests before routing happens.

    Args:
        exc: AppError instance.

    Returns:
        JSONResponse with status from the error kind.
    """
    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }

    # Include details only if present (optional structured context)
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": error_content},
        headers=build_error_headers(exc) or None,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    All responses include:
    - error.code: Machine-readable error kind (e.g. missing, expired, invalid, blacklisted)
    - error.message: Human-readable message
    - error.request_id: For distributed tracing
    - error.details: Optional structured context

    Args:
        request: FastAPI request object.
        exc: AppError instance.

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": exc.status_code,
            "has_details": bool(exc.details),
            "request_path": request.url.path,
            "request_id": get_request_id(),
        },
    )
    return build_error_response(exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request body/query validation failures as ``validation`` errors."""
    fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
    logger.info(
        "request_validation_failed",
        extra={"request_path": request.url.path, "fields": fields},
    )
    return build_error_response(
        AppError(kind=ErrorKind.VALIDATION, details={"context": {"fields": fields}})
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning generic message.
    Prevents information leakage (no stack traces to client).

    Args:
        request: FastAPI request object.
        exc: Exception instance (unexpected).

    Returns:
        JSONResponse with generic error (no implementation details leaked).
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        }
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

    Must be called during app initialization, before route registration.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(general_exception_handler)
