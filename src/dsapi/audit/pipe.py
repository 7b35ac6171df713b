"""Background batching channel for audit log events.

A channel collects messages for one (log group, stream) pair and writes them
as a single batch when one of these happens:

- no message arrived within the inactivity timeout
- the cancellation event was set (application shutdown)
- the channel was closed

Messages already queued when the channel is closed or cancelled are drained
into the final batch. Write failures are logged, never raised.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from types import TracebackType
from typing import Any, Final

from dsapi.observability.metrics import (
    audit_events_counter,
    audit_flush_counter,
    audit_flush_failures_counter,
)

logger = logging.getLogger(__name__)

#: Default inactivity timeout before a batch is flushed (seconds).
DEFAULT_TIMEOUT: Final = 600.0

#: How often the collector wakes up to check the cancellation event.
POLL_INTERVAL: Final = 0.5

Event = dict[str, Any]
Writer = Callable[[list[Event]], None]

_CLOSE: Final = object()


def now_ms() -> int:
    return time.time_ns() // 1_000_000


class AuditLogChannel:
    """Non-blocking sink for audit messages, flushed by a collector thread.

    Args:
        writer: Called once with the batch of ``{"timestamp", "message"}``
            events, in send order.
        name: Label used in log lines, usually ``group/stream``.
        timeout: Inactivity timeout in seconds.
        cancel: Optional event that ends collection early.
    """

    def __init__(
        self,
        writer: Writer,
        *,
        name: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        cancel: threading.Event | None = None,
    ) -> None:
        self._writer = writer
        self.name = name
        self.timeout = timeout
        self._cancel = cancel
        self._queue: queue.Queue[object] = queue.Queue()
        self._closed = threading.Event()
        # orders sends against the close hand-off so a queued message is always drained
        self._lock = threading.Lock()
        self._thread = threading.Thread(
            target=self._run, name=f"audit-log-{name}", daemon=True
        )
        self._thread.start()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, message: str) -> None:
        """Queue ``message`` for the next batch without waiting for the writer."""
        with self._lock:
            if not self._closed.is_set():
                self._queue.put((now_ms(), message))
                return
        logger.warning("audit log channel %s is closed, dropping message: %s", self.name, message)

    def close(self) -> None:
        """Stop accepting messages and flush what has been queued."""
        with self._lock:
            if self._closed.is_set():
                return
            self._closed.set()
            self._queue.put(_CLOSE)

    def join(self, timeout: float | None = None) -> None:
        """Wait for the collector thread to finish its flush."""
        self._thread.join(timeout)

    def __enter__(self) -> AuditLogChannel:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _run(self) -> None:
        logger.debug("starting log batching thread for %s", self.name)
        batch: list[Event] = []
        deadline = time.monotonic() + self.timeout

        while True:
            if self._cancel is not None and self._cancel.is_set():
                logger.debug("audit log channel %s cancelled", self.name)
                trigger = "cancel"
                break

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(
                    "timed out waiting for more log messages to write to %s", self.name
                )
                trigger = "timeout"
                break

            try:
                item = self._queue.get(timeout=min(remaining, POLL_INTERVAL))
            except queue.Empty:
                continue

            if item is _CLOSE:
                trigger = "close"
                break

            timestamp, message = item  # type: ignore[misc]
            logger.debug("%d received message %s", timestamp, message)
            batch.append({"timestamp": timestamp, "message": message})
            deadline = time.monotonic() + self.timeout

        with self._lock:
            self._closed.set()
        self._drain(batch)
        self._flush(batch, trigger)

    def _drain(self, batch: list[Event]) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            if item is _CLOSE:
                continue
            timestamp, message = item  # type: ignore[misc]
            batch.append({"timestamp": timestamp, "message": message})

    def _flush(self, batch: list[Event], trigger: str) -> None:
        logger.debug("finalizing log batch for %s (%s)", self.name, trigger)
        if not batch:
            return

        audit_flush_counter.labels(trigger=trigger).inc()
        for event in batch:
            logger.debug(
                "sending log event to %s: %d %s", self.name, event["timestamp"], event["message"]
            )

        try:
            self._writer(batch)
        except Exception as e:
            audit_flush_failures_counter.inc()
            logger.error("failed to log events: %s", e)
            return

        audit_events_counter.inc(len(batch))
