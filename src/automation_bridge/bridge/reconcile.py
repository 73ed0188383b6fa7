"""Poll the remote engine until a dispatched run reaches a terminal state.

State machine per execution::

    running --poll--> running | completed | failed
    running --attempts exhausted--> timeout

``timeout`` is a local give-up, not a remote cancellation: the remote run may
still finish. Such records can be re-polled explicitly (``repoll_timeout=True``);
nothing revisits them automatically.

Only the writer that wins :meth:`MirrorStore.update_terminal` feeds the
statistics aggregator, so concurrent reconcilers never double count.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from automation_bridge.bridge.errors import NotFound, RemoteUnavailable
from automation_bridge.bridge.models import ExecutionRecord, ExecutionStatus
from automation_bridge.bridge.remote.client import RemoteCatalogClient
from automation_bridge.bridge.remote.types import RemoteExecution
from automation_bridge.bridge.stats import StatisticsAggregator
from automation_bridge.bridge.store import MirrorStore

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Reconciliation cancelled"


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    status: ExecutionStatus
    output_data: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    @classmethod
    def from_record(cls, record: ExecutionRecord) -> ReconcileResult:
        return cls(status=record.status, output_data=record.output_data, error=record.error_message)


class ExecutionReconciler:
    def __init__(
        self,
        *,
        client: RemoteCatalogClient,
        store: MirrorStore,
        stats: StatisticsAggregator,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._client = client
        self._store = store
        self._stats = stats
        self._clock = clock

    def reconcile(
        self,
        execution_id: str,
        max_attempts: int = 10,
        interval_ms: int = 2000,
        *,
        organization_id: str | None = None,
        repoll_timeout: bool = False,
        cancel: threading.Event | None = None,
    ) -> ReconcileResult:
        """Resolve one execution, blocking for at most ``max_attempts * interval_ms``.

        Terminal records are returned untouched, which makes this safe to call
        repeatedly. With ``repoll_timeout`` a ``timeout`` record is polled again.
        A set ``cancel`` event stops polling without writing anything.
        """

        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if interval_ms < 0:
            raise ValueError("interval_ms must be >= 0")

        record = self._store.get_execution(execution_id, organization_id=organization_id)
        revising = repoll_timeout and record.status == ExecutionStatus.TIMEOUT
        if record.is_terminal and not revising:
            return ReconcileResult.from_record(record)

        remote_id = record.remote_execution_id
        if not remote_id:
            if revising:
                return ReconcileResult.from_record(record)
            return self._finish(
                record,
                ExecutionStatus.TIMEOUT,
                error="Remote engine returned no execution id; outcome unknown",
            )

        for attempt in range(1, max_attempts + 1):
            if cancel is not None and cancel.is_set():
                return self._cancelled(record)

            try:
                remote = self._client.get_execution(remote_id)
            except RemoteUnavailable as e:
                logger.warning(
                    "Poll failed; will retry",
                    extra={"execution_id": record.id, "attempt": attempt, "error": str(e)},
                )
            except NotFound:
                return self._finish(
                    record,
                    ExecutionStatus.FAILED,
                    error=f"Remote execution {remote_id} not found",
                    revising=revising,
                )
            else:
                if remote.is_finished:
                    status = (
                        ExecutionStatus.COMPLETED if remote.succeeded else ExecutionStatus.FAILED
                    )
                    return self._finish(record, status, remote=remote, revising=revising)
                logger.debug(
                    "Remote execution still running",
                    extra={"execution_id": record.id, "attempt": attempt, "status": remote.status},
                )

            if attempt < max_attempts and self._wait(interval_ms, cancel):
                return self._cancelled(record)

        if revising:
            logger.info(
                "Re-poll found execution still unfinished", extra={"execution_id": record.id}
            )
            return ReconcileResult.from_record(record)

        logger.warning(
            "Polling timed out",
            extra={"execution_id": record.id, "max_attempts": max_attempts},
        )
        return self._finish(
            record,
            ExecutionStatus.TIMEOUT,
            error=f"Polling timed out after {max_attempts} attempts",
        )

    @staticmethod
    def _wait(interval_ms: int, cancel: threading.Event | None) -> bool:
        """Sleep between polls. Returns True if cancelled while waiting."""

        seconds = interval_ms / 1000.0
        if cancel is None:
            time.sleep(seconds)
            return False
        return cancel.wait(seconds)

    def _cancelled(self, record: ExecutionRecord) -> ReconcileResult:
        logger.info("Reconciliation cancelled", extra={"execution_id": record.id})
        return ReconcileResult(status=record.status, error=CANCELLED_MESSAGE)

    def _finish(
        self,
        record: ExecutionRecord,
        status: ExecutionStatus,
        *,
        remote: RemoteExecution | None = None,
        error: str | None = None,
        revising: bool = False,
    ) -> ReconcileResult:
        now = self._clock()

        execution_time_ms: int | None = None
        output_data: Any = None
        error_message = error
        if status == ExecutionStatus.COMPLETED:
            execution_time_ms = remote.duration_ms if remote is not None else None
            if execution_time_ms is None:
                execution_time_ms = max(0, int((now - record.started_at).total_seconds() * 1000))
            output_data = remote.output if remote is not None else None
            error_message = None
        elif status == ExecutionStatus.FAILED and remote is not None:
            error_message = remote.error_message

        updated = record.model_copy(
            update={
                "status": status,
                "finished_at": now,
                "execution_time_ms": execution_time_ms,
                "output_data": output_data,
                "error_message": error_message,
            }
        )
        allow_from = {ExecutionStatus.TIMEOUT} if revising else set()
        stored = self._store.update_terminal(updated, allow_from=allow_from)
        if stored is None:
            # Another reconciler got there first; report what it wrote.
            return ReconcileResult.from_record(self._store.get_execution(record.id))

        if revising:
            self._stats.revise_terminal(record.workflow_id, status, execution_time_ms)
        else:
            self._stats.record_terminal(record.workflow_id, status, execution_time_ms)

        logger.info(
            "Execution reconciled",
            extra={
                "execution_id": record.id,
                "workflow_id": record.workflow_id,
                "status": status.value,
                "execution_time_ms": execution_time_ms,
            },
        )
        return ReconcileResult.from_record(stored)
