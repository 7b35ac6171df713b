"""Tests for AWS error classification and the error taxonomy."""

from __future__ import annotations

import pytest
from botocore.exceptions import EndpointConnectionError

from dsapi.errors import ApiError, ErrorKind, OperationCancelledError, conflict
from dsapi.storage.errors import classify, error_code, is_not_found
from tests.fakes import client_error


@pytest.mark.parametrize(
    ("code", "kind"),
    [
        ("AccessDenied", ErrorKind.FORBIDDEN),
        ("InvalidAccessKeyId", ErrorKind.FORBIDDEN),
        ("BucketNotEmpty", ErrorKind.CONFLICT),
        ("EntityAlreadyExists", ErrorKind.CONFLICT),
        ("NoSuchEntity", ErrorKind.NOT_FOUND),
        ("NoSuchBucket", ErrorKind.NOT_FOUND),
        ("ResourceNotFoundException", ErrorKind.NOT_FOUND),
        ("MalformedPolicyDocument", ErrorKind.BAD_REQUEST),
        ("InvalidBucketName", ErrorKind.BAD_REQUEST),
        ("LimitExceeded", ErrorKind.LIMIT_EXCEEDED),
        ("SlowDown", ErrorKind.LIMIT_EXCEEDED),
        ("ServiceUnavailable", ErrorKind.LIMIT_EXCEEDED),
        ("InternalError", ErrorKind.SERVICE_UNAVAILABLE),
        ("ServiceFailure", ErrorKind.SERVICE_UNAVAILABLE),
    ],
)
def test_known_codes_map_to_kind(code: str, kind: ErrorKind) -> None:
    """Codes from the fixed table map to their error kind."""
    err = classify("operation failed", client_error(code, "Op"))

    assert isinstance(err, ApiError)
    assert err.kind is kind
    assert err.message == "operation failed"
    assert err.details == {"backend_code": code}


def test_unknown_code_is_bad_request_with_aws_message() -> None:
    """An unknown code becomes BadRequest carrying the AWS message."""
    exc = client_error("SomethingOdd", "Op", "the odd thing happened")
    err = classify("operation failed", exc)

    assert isinstance(err, ApiError)
    assert err.kind is ErrorKind.BAD_REQUEST
    assert err.message == "operation failed: the odd thing happened"
    assert err.cause is exc


def test_api_error_passes_through_unchanged() -> None:
    """Already classified errors are returned as-is."""
    original = conflict("already there")
    assert classify("ignored", original) is original


def test_cancellation_passes_through_unchanged() -> None:
    """Cancellation is never reclassified."""
    original = OperationCancelledError("stop")
    assert classify("ignored", original) is original


def test_non_aws_error_is_internal() -> None:
    """Transport and programming errors become Internal."""
    transport = classify("operation failed", EndpointConnectionError(endpoint_url="http://x"))
    other = classify("operation failed", KeyError("x"))

    assert isinstance(transport, ApiError)
    assert transport.kind is ErrorKind.INTERNAL
    assert isinstance(other, ApiError)
    assert other.kind is ErrorKind.INTERNAL


def test_is_not_found_accepts_bare_404() -> None:
    """HeadBucket reports a missing bucket as code "404"."""
    assert is_not_found(client_error("404", "HeadBucket"))
    assert is_not_found(client_error("NoSuchBucket", "HeadBucket"))
    assert not is_not_found(client_error("403", "HeadBucket"))
    assert not is_not_found(ValueError("x"))


def test_error_code_of_non_client_error_is_none() -> None:
    assert error_code(RuntimeError("x")) is None
    assert error_code(client_error("NoSuchKey", "GetObject")) == "NoSuchKey"


@pytest.mark.parametrize(
    ("kind", "status"),
    [
        (ErrorKind.BAD_REQUEST, 400),
        (ErrorKind.FORBIDDEN, 403),
        (ErrorKind.NOT_FOUND, 404),
        (ErrorKind.CONFLICT, 409),
        (ErrorKind.LIMIT_EXCEEDED, 429),
        (ErrorKind.INTERNAL, 500),
        (ErrorKind.SERVICE_UNAVAILABLE, 503),
    ],
)
def test_kind_http_status(kind: ErrorKind, status: int) -> None:
    """Each error kind renders to its HTTP status."""
    assert ApiError(kind, "x").http_status == status


def test_api_error_str_includes_cause() -> None:
    err = ApiError(ErrorKind.INTERNAL, "outer", cause=ValueError("inner"))
    assert str(err) == "outer: inner"
    assert str(ApiError(ErrorKind.INTERNAL, "alone")) == "alone"
