"""Tests for the batching audit log channel."""

from __future__ import annotations

import logging
import threading

import pytest

from dsapi.audit.pipe import AuditLogChannel, Event


class RecordingWriter:
    def __init__(self) -> None:
        self.batches: list[list[Event]] = []

    def __call__(self, events: list[Event]) -> None:
        self.batches.append(list(events))

    def messages(self) -> list[list[str]]:
        return [[e["message"] for e in batch] for batch in self.batches]


def test_close_flushes_one_batch_in_send_order() -> None:
    """Messages are written once, as a single FIFO batch."""
    writer = RecordingWriter()
    channel = AuditLogChannel(writer, name="test", timeout=30)

    for message in ["first", "second", "third"]:
        channel.send(message)
    channel.close()
    channel.join(5)

    assert writer.messages() == [["first", "second", "third"]]
    timestamps = [e["timestamp"] for e in writer.batches[0]]
    assert timestamps == sorted(timestamps)


def test_context_manager_closes_channel() -> None:
    writer = RecordingWriter()

    with AuditLogChannel(writer, timeout=30) as channel:
        channel.send("inside")

    channel.join(5)
    assert channel.closed
    assert writer.messages() == [["inside"]]


def test_inactivity_timeout_flushes() -> None:
    """An idle channel flushes on its own once the timeout passes."""
    writer = RecordingWriter()
    channel = AuditLogChannel(writer, timeout=0.05)
    channel.send("idle")

    channel.join(5)

    assert writer.messages() == [["idle"]]
    assert channel.closed


def test_cancellation_flushes_pending_messages() -> None:
    writer = RecordingWriter()
    cancel = threading.Event()
    channel = AuditLogChannel(writer, timeout=30, cancel=cancel)
    channel.send("before shutdown")

    cancel.set()
    channel.join(5)

    assert writer.messages() == [["before shutdown"]]


def test_send_after_close_is_dropped(caplog: pytest.LogCaptureFixture) -> None:
    writer = RecordingWriter()
    channel = AuditLogChannel(writer, timeout=30)
    channel.send("kept")
    channel.close()
    channel.join(5)

    with caplog.at_level(logging.WARNING, logger="dsapi.audit.pipe"):
        channel.send("late")

    assert writer.messages() == [["kept"]]
    assert "dropping message" in caplog.text


def test_empty_channel_writes_nothing() -> None:
    writer = RecordingWriter()
    channel = AuditLogChannel(writer, timeout=30)
    channel.close()
    channel.join(5)

    assert writer.batches == []


def test_writer_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    """A failing write is reported in the log and the channel still finishes."""

    def broken(events: list[Event]) -> None:
        raise RuntimeError("logs unavailable")

    with caplog.at_level(logging.ERROR, logger="dsapi.audit.pipe"):
        channel = AuditLogChannel(broken, timeout=30)
        channel.send("lost")
        channel.close()
        channel.join(5)

    assert "failed to log events: logs unavailable" in caplog.text


def test_sends_racing_cancellation_are_written_or_reported(
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Every message sent while the channel shuts down is either flushed or logged as dropped."""
    writer = RecordingWriter()
    cancel = threading.Event()
    channel = AuditLogChannel(writer, name="race", timeout=30, cancel=cancel)

    def sender(prefix: str) -> None:
        for i in range(500):
            channel.send(f"{prefix}-{i}")

    senders = [threading.Thread(target=sender, args=(f"s{n}",)) for n in range(4)]
    with caplog.at_level(logging.WARNING, logger="dsapi.audit.pipe"):
        for t in senders:
            t.start()
        cancel.set()
        for t in senders:
            t.join()
        channel.join(5)

    written = sum(len(batch) for batch in writer.batches)
    dropped = sum("dropping message" in r.getMessage() for r in caplog.records)
    assert written + dropped == 2000
    assert len(writer.batches) <= 1
