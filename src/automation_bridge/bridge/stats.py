"""Per-workflow run counters and moving average latency.

No latency history is stored. The mean over successful runs is updated with
the incremental-mean formula::

    avg' = (avg * n + t) / (n + 1)

where ``n`` is the success count *before* this run.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from automation_bridge.bridge.models import ExecutionStatus, WorkflowDefinition
from automation_bridge.bridge.store import MirrorStore

logger = logging.getLogger(__name__)


def incremental_mean(avg: float | None, count: int, sample: float) -> float:
    """Fold ``sample`` into a mean over ``count`` previous samples."""

    if count <= 0 or avg is None:
        return float(sample)
    return (avg * count + sample) / (count + 1)


def apply_terminal(
    workflow: WorkflowDefinition,
    status: ExecutionStatus,
    execution_time_ms: int | None,
    when: datetime,
) -> WorkflowDefinition:
    """Return ``workflow`` with one more terminal run counted."""

    if not status.is_terminal:
        raise ValueError(f"Not a terminal status: {status.value}")

    completed = status == ExecutionStatus.COMPLETED
    avg = workflow.avg_execution_time_ms
    if completed and execution_time_ms is not None:
        avg = incremental_mean(avg, workflow.successful_executions, execution_time_ms)

    return workflow.model_copy(
        update={
            "total_executions": workflow.total_executions + 1,
            "successful_executions": workflow.successful_executions + (1 if completed else 0),
            "failed_executions": workflow.failed_executions + (0 if completed else 1),
            "avg_execution_time_ms": avg,
            "last_execution_at": when,
            "last_execution_status": status,
        }
    )


def apply_revision(
    workflow: WorkflowDefinition,
    status: ExecutionStatus,
    execution_time_ms: int | None,
    when: datetime,
) -> WorkflowDefinition:
    """Correct the counters for a timed-out run that later resolved.

    ``timeout`` was counted as a failure. A late success moves that unit from
    failed to successful; a late failure leaves the counters alone.
    """

    if status != ExecutionStatus.COMPLETED or workflow.failed_executions <= 0:
        return workflow.model_copy(
            update={"last_execution_at": when, "last_execution_status": status}
        )

    avg = workflow.avg_execution_time_ms
    if execution_time_ms is not None:
        avg = incremental_mean(avg, workflow.successful_executions, execution_time_ms)
    return workflow.model_copy(
        update={
            "successful_executions": workflow.successful_executions + 1,
            "failed_executions": workflow.failed_executions - 1,
            "avg_execution_time_ms": avg,
            "last_execution_at": when,
            "last_execution_status": status,
        }
    )


class StatisticsAggregator:
    """Applies terminal outcomes to a workflow's counters atomically."""

    def __init__(
        self,
        *,
        store: MirrorStore,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._store = store
        self._clock = clock

    def record_terminal(
        self,
        workflow_id: str,
        status: ExecutionStatus,
        execution_time_ms: int | None = None,
    ) -> WorkflowDefinition:
        when = self._clock()
        updated = self._store.update_workflow_stats(
            workflow_id, lambda wf: apply_terminal(wf, status, execution_time_ms, when)
        )
        logger.info(
            "Workflow statistics updated",
            extra={
                "workflow_id": workflow_id,
                "status": status.value,
                "total_executions": updated.total_executions,
                "successful_executions": updated.successful_executions,
                "failed_executions": updated.failed_executions,
            },
        )
        return updated

    def revise_terminal(
        self,
        workflow_id: str,
        status: ExecutionStatus,
        execution_time_ms: int | None = None,
    ) -> WorkflowDefinition:
        when = self._clock()
        updated = self._store.update_workflow_stats(
            workflow_id, lambda wf: apply_revision(wf, status, execution_time_ms, when)
        )
        logger.info(
            "Workflow statistics revised after re-poll",
            extra={"workflow_id": workflow_id, "status": status.value},
        )
        return updated
