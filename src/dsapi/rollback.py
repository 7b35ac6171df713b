"""Rollback ledger for multi-step provisioning protocols.

Each successful forward step registers a compensating action. If the
protocol aborts, the compensators run in reverse registration order; a
failing compensator is logged and the remaining ones still run.

Usage:
    with RollbackLedger("provision") as ledger:
        client.create_bucket(Bucket=name)
        ledger.push(lambda: client.delete_bucket(Bucket=name), "delete bucket")
        ...
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from types import TracebackType

from dsapi.observability.metrics import rollback_counter, rollback_task_failures_counter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RollbackTask:
    """A registered compensating action."""

    description: str
    compensate: Callable[[], object]


class RollbackLedger:
    """LIFO stack of compensating actions, run only when the scope fails."""

    def __init__(self, operation: str = "operation") -> None:
        self.operation = operation
        self._tasks: list[RollbackTask] = []

    def __len__(self) -> int:
        return len(self._tasks)

    def push(self, compensate: Callable[[], object], description: str = "") -> None:
        """Register a compensator for the step that just succeeded."""
        self._tasks.append(RollbackTask(description=description, compensate=compensate))

    def rollback(self) -> None:
        """Run all compensators in reverse order, continuing past failures."""
        if not self._tasks:
            return

        logger.info("executing rollback of %d tasks", len(self._tasks))
        rollback_counter.labels(operation=self.operation).inc()

        for task in reversed(self._tasks):
            try:
                logger.debug("rollback %s: %s", self.operation, task.description)
                task.compensate()
            except Exception as e:
                rollback_task_failures_counter.labels(operation=self.operation).inc()
                logger.error("rollback task error: %s, continuing rollback", e)

        self._tasks.clear()

    def __enter__(self) -> RollbackLedger:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            self.rollback()
