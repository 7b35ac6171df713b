"""Bounded retry with exponential backoff and jitter.

A callable is retried up to ``attempts`` times. After each failed attempt the
delay grows by half of a random jitter drawn from ``[0, delay)`` and then
doubles for the next attempt. Raising StopRetry from the callable ends the
loop immediately with the wrapped error.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from typing import TypeVar

from dsapi.errors import OperationCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StopRetry(Exception):
    """Raised by a retried callable to stop retrying and surface ``error``."""

    def __init__(self, error: BaseException) -> None:
        super().__init__(str(error))
        self.error = error


def retry(
    attempts: int,
    delay: float,
    fn: Callable[[], T],
    *,
    cancel: threading.Event | None = None,
) -> T:
    """Call ``fn`` until it succeeds or ``attempts`` is exhausted.

    Args:
        attempts: Maximum number of calls to make (at least one call is made).
        delay: Initial delay in seconds between attempts.
        fn: Zero-argument callable to retry.
        cancel: Optional event; when set during a backoff sleep the retry is
            abandoned with OperationCancelledError.

    Returns:
        The value returned by the first successful call.

    Raises:
        OperationCancelledError: If ``cancel`` is set while waiting.
        Exception: The error wrapped by StopRetry, or the last error raised.
    """
    remaining = max(attempts, 1)
    while True:
        try:
            return fn()
        except StopRetry as stop:
            raise stop.error from None
        except Exception as e:
            remaining -= 1
            if remaining <= 0:
                raise

            jitter = random.uniform(0, delay) if delay > 0 else 0.0
            delay = delay + jitter / 2
            logger.debug("retrying after error: %s (sleep %.2fs, %d left)", e, delay, remaining)

            if cancel is not None:
                if cancel.wait(delay):
                    raise OperationCancelledError("retry cancelled") from e
            elif delay > 0:
                time.sleep(delay)

            delay *= 2
