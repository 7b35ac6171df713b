"""Exception handlers rendering every failure as the error envelope.

Global exception handlers:
- ApiError: classified control plane errors, status from their kind
- OperationCancelledError: work abandoned during shutdown (503)
- HTTPException: FastAPI/Starlette HTTP exceptions
- RequestValidationError: request body/parameter validation (400)
- Exception: catch-all for unhandled exceptions (500, no stack traces)
"""

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from dsapi.api.error_model import get_error_code_for_status, make_error_response
from dsapi.errors import ApiError, OperationCancelledError

logger = logging.getLogger(__name__)


async def api_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render an ApiError with the code matching its kind's HTTP status."""
    assert isinstance(exc, ApiError)

    status = exc.http_status
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%d): %s", request.method, request.url.path, status, exc)

    return make_error_response(
        request,
        code=get_error_code_for_status(status),
        message=exc.message,
        http_status=status,
        details=exc.details,
    )


async def cancelled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, OperationCancelledError)

    logger.warning("%s %s cancelled: %s", request.method, request.url.path, exc)
    return make_error_response(
        request,
        code=get_error_code_for_status(503),
        message="request cancelled, service is shutting down",
        http_status=503,
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map standard HTTP exceptions (404 routes, 405 methods) to the envelope."""
    assert isinstance(exc, HTTPException)

    code = get_error_code_for_status(exc.status_code)
    message = str(exc.detail) if exc.detail else f"HTTP {exc.status_code}"

    return make_error_response(
        request,
        code=code,
        message=message,
        http_status=exc.status_code,
        details=None,
    )


async def request_validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map pydantic validation errors to 400 with per-field details."""
    assert isinstance(exc, RequestValidationError)

    safe_details: list[dict[str, Any]] = []
    for error in exc.errors():
        loc = error.get("loc", ())
        safe_loc = [str(part) for part in loc if part not in ("body", "query", "path", "header")]
        safe_details.append(
            {
                "field": ".".join(safe_loc) if safe_loc else "request",
                "message": error.get("msg", "Validation error"),
            }
        )

    return make_error_response(
        request,
        code=get_error_code_for_status(400),
        message="cannot decode request body",
        http_status=400,
        details={"errors": safe_details} if safe_details else None,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: log the exception, answer 500 without internals."""
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "Unhandled exception: %s",
        type(exc).__name__,
        extra={"request_id": request_id},
    )

    return make_error_response(
        request,
        code="INTERNAL_ERROR",
        message="internal error",
        http_status=500,
        details=None,
    )
