"""Background reconciliation, decoupled from the request that dispatched a run.

The worker owns a small thread pool, the set of executions currently being
polled, and one cancellation token per execution. A periodic sweep picks up
every ``running`` record, so executions survive a process restart.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field

from automation_bridge.bridge.logging import log_context
from automation_bridge.bridge.models import ExecutionStatus
from automation_bridge.bridge.reconcile import ExecutionReconciler
from automation_bridge.bridge.store import MirrorStore

logger = logging.getLogger(__name__)


@dataclass
class _Job:
    workflow_id: str
    organization_id: str
    token: threading.Event = field(default_factory=threading.Event)
    future: Future[None] | None = None


class ReconciliationWorker:
    def __init__(
        self,
        *,
        reconciler: ExecutionReconciler,
        store: MirrorStore,
        max_workers: int = 4,
        max_attempts: int = 10,
        interval_ms: int = 2000,
    ) -> None:
        self._reconciler = reconciler
        self._store = store
        self._max_attempts = max_attempts
        self._interval_ms = interval_ms
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="reconcile"
        )
        self._lock = threading.Lock()
        self._jobs: dict[str, _Job] = {}
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    def submit(self, execution_id: str) -> bool:
        """Queue an execution for polling. Returns False if it is already queued."""

        record = self._store.get_execution(execution_id)
        if record.is_terminal:
            return False
        with self._lock:
            if self._stop.is_set() or execution_id in self._jobs:
                return False
            job = _Job(workflow_id=record.workflow_id, organization_id=record.organization_id)
            self._jobs[execution_id] = job
            job.future = self._executor.submit(self._run, execution_id, job.token)
        logger.debug("Reconciliation queued", extra={"execution_id": execution_id})
        return True

    def _run(self, execution_id: str, token: threading.Event) -> None:
        try:
            with log_context(execution_id=execution_id):
                result = self._reconciler.reconcile(
                    execution_id,
                    self._max_attempts,
                    self._interval_ms,
                    cancel=token,
                )
            logger.info(
                "Background reconciliation finished",
                extra={"execution_id": execution_id, "status": result.status.value},
            )
        except Exception:
            logger.exception("Background reconciliation failed", extra={"execution_id": execution_id})
        finally:
            with self._lock:
                self._jobs.pop(execution_id, None)

    def in_flight(self) -> set[str]:
        with self._lock:
            return set(self._jobs)

    def cancel(self, execution_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(execution_id)
        if job is None:
            return False
        job.token.set()
        return True

    def cancel_workflow(self, workflow_id: str) -> int:
        with self._lock:
            jobs = [j for j in self._jobs.values() if j.workflow_id == workflow_id]
        for job in jobs:
            job.token.set()
        return len(jobs)

    def cancel_organization(self, organization_id: str) -> int:
        with self._lock:
            jobs = [j for j in self._jobs.values() if j.organization_id == organization_id]
        for job in jobs:
            job.token.set()
        return len(jobs)

    def sweep(self) -> int:
        """Queue every running execution that is not already being polled.

        Records without a remote id are skipped: a dispatch may still be writing it.
        """

        queued = 0
        for record in self._store.list_executions(status=ExecutionStatus.RUNNING):
            if record.remote_execution_id and self.submit(record.id):
                queued += 1
        if queued:
            logger.info("Sweep queued executions", extra={"queued": queued})
        return queued

    def start_periodic_sweep(self, interval_seconds: float) -> threading.Thread:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if self._sweeper is not None and self._sweeper.is_alive():
            return self._sweeper

        def _loop() -> None:
            while not self._stop.is_set():
                try:
                    self.sweep()
                except Exception:
                    logger.exception("Reconciliation sweep failed")
                self._stop.wait(interval_seconds)

        self._sweeper = threading.Thread(target=_loop, name="reconcile-sweep", daemon=True)
        self._sweeper.start()
        return self._sweeper

    def wait(self, timeout: float | None = None) -> bool:
        """Block until every queued reconciliation is done. Returns False on timeout."""

        with self._lock:
            futures = [j.future for j in self._jobs.values() if j.future is not None]
        _, pending = wait_futures(futures, timeout=timeout)
        return not pending

    def shutdown(self, *, wait: bool = True) -> None:
        self._stop.set()
        with self._lock:
            jobs = list(self._jobs.values())
        for job in jobs:
            job.token.set()
        self._executor.shutdown(wait=wait)
        if self._sweeper is not None and wait:
            self._sweeper.join(timeout=5)
