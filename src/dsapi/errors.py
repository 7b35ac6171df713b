"""Error taxonomy for the dataset control plane.

Every failure surfaced by the core is an ApiError carrying one of a closed
set of kinds. The HTTP layer renders the kind into a status code and the
normative error envelope (see dsapi.api.errors).
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    """Closed set of error kinds surfaced by the control plane."""

    BAD_REQUEST = "BadRequest"
    NOT_FOUND = "NotFound"
    FORBIDDEN = "Forbidden"
    CONFLICT = "Conflict"
    LIMIT_EXCEEDED = "LimitExceeded"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    INTERNAL = "Internal"

    @property
    def http_status(self) -> int:
        return _KIND_TO_STATUS[self]


_KIND_TO_STATUS: dict[ErrorKind, int] = {
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.LIMIT_EXCEEDED: 429,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
    ErrorKind.INTERNAL: 500,
}


class ApiError(Exception):
    """Classified control plane error.

    Attributes:
        kind: ErrorKind of the failure.
        message: Human-readable message, safe to return to callers.
        cause: The underlying exception, if any.
        details: Optional dict with additional context (e.g. backend_code).
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        cause: BaseException | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.cause = cause
        self.details = details

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message

    @property
    def http_status(self) -> int:
        return self.kind.http_status


class OperationCancelledError(Exception):
    """Raised when a long-running operation observes its cancellation event."""


def bad_request(message: str, cause: BaseException | None = None) -> ApiError:
    return ApiError(ErrorKind.BAD_REQUEST, message, cause=cause)


def not_found(message: str, cause: BaseException | None = None) -> ApiError:
    return ApiError(ErrorKind.NOT_FOUND, message, cause=cause)


def forbidden(message: str, cause: BaseException | None = None) -> ApiError:
    return ApiError(ErrorKind.FORBIDDEN, message, cause=cause)


def conflict(message: str, cause: BaseException | None = None) -> ApiError:
    return ApiError(ErrorKind.CONFLICT, message, cause=cause)


def limit_exceeded(message: str, cause: BaseException | None = None) -> ApiError:
    return ApiError(ErrorKind.LIMIT_EXCEEDED, message, cause=cause)


def service_unavailable(message: str, cause: BaseException | None = None) -> ApiError:
    return ApiError(ErrorKind.SERVICE_UNAVAILABLE, message, cause=cause)


def internal(message: str, cause: BaseException | None = None) -> ApiError:
    return ApiError(ErrorKind.INTERNAL, message, cause=cause)
