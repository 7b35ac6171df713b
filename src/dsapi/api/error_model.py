"""Shared error response builder for the dataset API.

Every non-2xx JSON response uses the same envelope:
- code: str - machine-readable error code (e.g., "BAD_REQUEST", "CONFLICT")
- message: str - human-readable error message
- details: dict | None - optional additional context
- request_id: str - request correlation ID (always present)
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

REQUEST_ID_HEADER = "X-Request-Id"


def _get_request_id(request: Request) -> str:
    """Extract or generate request_id for error responses.

    Priority:
    1. request.state.request_id (set by RequestIdMiddleware)
    2. X-Request-Id header (if present)
    3. Generate new UUID (fallback)
    """
    request_id: str | None = getattr(request.state, "request_id", None)
    if request_id is not None:
        return str(request_id)

    header_id: str | None = request.headers.get(REQUEST_ID_HEADER)
    if header_id:
        return header_id

    return str(uuid.uuid4())


def _envelope(
    *, code: str, message: str, http_status: int, request_id: str, details: dict[str, Any] | None
) -> JSONResponse:
    body: dict[str, Any] = {
        "code": code,
        "message": message,
        "details": details,
        "request_id": request_id,
    }

    response = JSONResponse(status_code=http_status, content=body)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


def make_error_response(
    request: Request,
    *,
    code: str,
    message: str,
    http_status: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build an error JSON response.

    Args:
        request: The FastAPI request object (for request_id extraction).
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        http_status: HTTP status code.
        details: Optional dict with additional context (no secrets).

    Returns:
        JSONResponse with the error envelope and X-Request-Id header.
    """
    return _envelope(
        code=code,
        message=message,
        http_status=http_status,
        request_id=_get_request_id(request),
        details=details,
    )


def make_error_response_no_request(
    *,
    code: str,
    message: str,
    http_status: int,
    request_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build an error response where only the request id is at hand (middleware paths)."""
    return _envelope(
        code=code,
        message=message,
        http_status=http_status,
        request_id=request_id or str(uuid.uuid4()),
        details=details,
    )


HTTP_STATUS_TO_CODE: dict[int, str] = {
    400: "BAD_REQUEST",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    415: "UNSUPPORTED_MEDIA_TYPE",
    429: "LIMIT_EXCEEDED",
    500: "INTERNAL_ERROR",
    501: "NOT_IMPLEMENTED",
    503: "SERVICE_UNAVAILABLE",
}


def get_error_code_for_status(status_code: int) -> str:
    """Get the standard error code for an HTTP status code."""
    return HTTP_STATUS_TO_CODE.get(status_code, "ERROR")
