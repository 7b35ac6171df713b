"""Tests for the bounded retry primitive."""

from __future__ import annotations

import threading

import pytest

from dsapi.errors import OperationCancelledError, not_found
from dsapi.retry import StopRetry, retry


class Flaky:
    """Callable failing a fixed number of times before succeeding."""

    def __init__(self, failures: int, result: str = "ok") -> None:
        self.failures = failures
        self.result = result
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"failure {self.calls}")
        return self.result


def test_returns_first_success() -> None:
    """A callable that succeeds immediately is called once."""
    fn = Flaky(0)
    assert retry(3, 0, fn) == "ok"
    assert fn.calls == 1


def test_retries_until_success() -> None:
    """Transient failures are retried within the attempt budget."""
    fn = Flaky(2)
    assert retry(3, 0, fn) == "ok"
    assert fn.calls == 3


def test_reraises_last_error_when_exhausted() -> None:
    """After the last attempt the last error propagates."""
    fn = Flaky(5)
    with pytest.raises(RuntimeError, match="failure 3"):
        retry(3, 0, fn)
    assert fn.calls == 3


def test_zero_attempts_still_calls_once() -> None:
    """At least one call is always made."""
    fn = Flaky(0)
    assert retry(0, 0, fn) == "ok"
    assert fn.calls == 1


def test_stop_retry_surfaces_wrapped_error() -> None:
    """StopRetry ends the loop immediately with the wrapped error."""
    calls = 0

    def fn() -> None:
        nonlocal calls
        calls += 1
        raise StopRetry(not_found("gone"))

    with pytest.raises(Exception) as exc_info:
        retry(5, 0, fn)

    assert str(exc_info.value) == "gone"
    assert calls == 1


def test_backoff_sleeps_grow(monkeypatch: pytest.MonkeyPatch) -> None:
    """Each sleep adds half the jitter, then the delay doubles."""
    sleeps: list[float] = []
    monkeypatch.setattr("dsapi.retry.time.sleep", sleeps.append)
    monkeypatch.setattr("dsapi.retry.random.uniform", lambda a, b: b)

    fn = Flaky(3)
    retry(4, 1.0, fn)

    # 1 + 1/2 = 1.5; 3 + 3/2 = 4.5; 9 + 9/2 = 13.5
    assert sleeps == [1.5, 4.5, 13.5]


def test_cancel_during_backoff_raises() -> None:
    """A set cancellation event aborts the retry during its sleep."""
    cancel = threading.Event()
    cancel.set()
    fn = Flaky(5)

    with pytest.raises(OperationCancelledError):
        retry(5, 10.0, fn, cancel=cancel)
    assert fn.calls == 1
