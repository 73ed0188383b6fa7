"""Persisted models for the local mirror of the remote engine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class TriggerType(str, Enum):
    WEBHOOK = "webhook"
    SCHEDULE = "schedule"
    EMAIL = "email"
    FORM = "form"
    CHAT = "chat"
    MANUAL = "manual"


class TriggerSource(str, Enum):
    MANUAL = "manual"
    SCHEDULE = "schedule"
    EVENT = "event"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[ExecutionStatus] = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.TIMEOUT}
)


class Integration(BaseModel):
    """A tenant's connection to the remote engine."""

    id: str
    organization_id: str
    name: str = ""
    active: bool = True
    last_sync_at: datetime | None = None


class WorkflowDefinition(BaseModel):
    """Local mirror of a remote workflow plus its running statistics.

    Rows are never deleted. A workflow that disappears remotely is kept with
    ``synced=False`` so its execution history stays attached.
    """

    id: str
    integration_id: str
    organization_id: str
    remote_id: str
    name: str
    active: bool = False
    trigger_type: TriggerType = TriggerType.MANUAL
    tags: list[str] = Field(default_factory=list)
    webhook_url: str | None = None
    synced: bool = True
    last_synced_at: datetime | None = None

    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    avg_execution_time_ms: float | None = None
    last_execution_at: datetime | None = None
    last_execution_status: ExecutionStatus | None = None


class ExecutionRecord(BaseModel):
    """One triggered run of a workflow.

    ``finished_at`` is set iff the status is terminal; ``execution_time_ms`` is
    only set for completed runs.
    """

    id: str
    workflow_id: str
    organization_id: str
    triggered_by: str
    trigger_source: TriggerSource = TriggerSource.MANUAL
    status: ExecutionStatus = ExecutionStatus.PENDING
    remote_execution_id: str | None = None
    input_data: dict[str, Any] = Field(default_factory=dict)
    output_data: Any = None
    error_message: str | None = None
    started_at: datetime
    finished_at: datetime | None = None
    execution_time_ms: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class EventMapping(BaseModel):
    """Routes an application event to a workflow.

    ``payload_transform`` maps target keys to dotted paths into the event data.
    """

    id: str
    organization_id: str
    event_type: str
    workflow_id: str
    workflow_name: str = ""
    payload_transform: dict[str, str] | None = None
    active: bool = True
    trigger_count: int = 0
    last_triggered_at: datetime | None = None
