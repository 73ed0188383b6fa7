"""JSON-file backed persistence for the local mirror.

One file per collection under a state directory, all guarded by a single lock.
The lock makes two operations safe under concurrent reconcilers:

- :meth:`MirrorStore.update_terminal` is a compare-and-swap on the stored status,
  so exactly one writer moves an execution to a terminal state.
- :meth:`MirrorStore.update_workflow_stats` runs a read-modify-write of the
  aggregate counters atomically.

This is intentionally minimal. A relational backend would implement the same
methods with a conditional UPDATE and a row lock.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Collection, Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel

from automation_bridge.bridge.errors import NotFound
from automation_bridge.bridge.models import (
    EventMapping,
    ExecutionRecord,
    ExecutionStatus,
    Integration,
    WorkflowDefinition,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_INTEGRATIONS = "integrations.json"
_WORKFLOWS = "workflows.json"
_EXECUTIONS = "executions.json"
_EVENT_MAPPINGS = "event_mappings.json"


@dataclass
class MirrorStore:
    root: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    # -- file helpers -----------------------------------------------------

    def _load_unlocked(self, filename: str, model: type[ModelT]) -> list[ModelT]:
        path = self.root / filename
        if not path.exists():
            return []
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(
                "State file is not valid JSON; treating as empty", extra={"path": str(path)}
            )
            return []
        if not isinstance(raw, list):
            logger.warning(
                "State file has unexpected shape; treating as empty", extra={"path": str(path)}
            )
            return []
        return [model.model_validate(item) for item in raw]

    def _save_unlocked(self, filename: str, items: Iterable[BaseModel]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        payload = [m.model_dump(mode="json") for m in items]
        (self.root / filename).write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )

    # -- integrations -----------------------------------------------------

    def upsert_integration(self, integration: Integration) -> Integration:
        with self._lock:
            items = self._load_unlocked(_INTEGRATIONS, Integration)
            items = [i for i in items if i.id != integration.id]
            items.append(integration)
            self._save_unlocked(_INTEGRATIONS, items)
            return integration

    def get_integration(
        self, integration_id: str, *, organization_id: str | None = None
    ) -> Integration:
        with self._lock:
            for item in self._load_unlocked(_INTEGRATIONS, Integration):
                if item.id != integration_id:
                    continue
                if organization_id is not None and item.organization_id != organization_id:
                    break
                return item
        raise NotFound(f"Integration not found: {integration_id}")

    def touch_integration_sync(self, integration_id: str, when: datetime) -> None:
        with self._lock:
            items = self._load_unlocked(_INTEGRATIONS, Integration)
            for idx, item in enumerate(items):
                if item.id == integration_id:
                    items[idx] = item.model_copy(update={"last_sync_at": when})
                    self._save_unlocked(_INTEGRATIONS, items)
                    return
        raise NotFound(f"Integration not found: {integration_id}")

    # -- workflows --------------------------------------------------------

    def list_workflows(
        self,
        *,
        organization_id: str | None = None,
        integration_id: str | None = None,
    ) -> list[WorkflowDefinition]:
        with self._lock:
            workflows = self._load_unlocked(_WORKFLOWS, WorkflowDefinition)
        if organization_id is not None:
            workflows = [w for w in workflows if w.organization_id == organization_id]
        if integration_id is not None:
            workflows = [w for w in workflows if w.integration_id == integration_id]
        workflows.sort(key=lambda w: w.name.lower())
        return workflows

    def get_workflow(
        self, workflow_id: str, *, organization_id: str | None = None
    ) -> WorkflowDefinition:
        with self._lock:
            for wf in self._load_unlocked(_WORKFLOWS, WorkflowDefinition):
                if wf.id != workflow_id:
                    continue
                if organization_id is not None and wf.organization_id != organization_id:
                    break
                return wf
        raise NotFound(f"Workflow not found: {workflow_id}")

    def find_workflow_by_remote_id(
        self, integration_id: str, remote_id: str
    ) -> WorkflowDefinition | None:
        with self._lock:
            for wf in self._load_unlocked(_WORKFLOWS, WorkflowDefinition):
                if wf.integration_id == integration_id and wf.remote_id == remote_id:
                    return wf
        return None

    def mirrored_remote_ids(self, integration_id: str) -> set[str]:
        """Remote ids currently mirrored *and* synced for an integration."""

        with self._lock:
            return {
                wf.remote_id
                for wf in self._load_unlocked(_WORKFLOWS, WorkflowDefinition)
                if wf.integration_id == integration_id and wf.synced
            }

    def upsert_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        with self._lock:
            workflows = self._load_unlocked(_WORKFLOWS, WorkflowDefinition)
            for idx, existing in enumerate(workflows):
                if existing.id == workflow.id:
                    workflows[idx] = workflow
                    break
            else:
                workflows.append(workflow)
            self._save_unlocked(_WORKFLOWS, workflows)
            return workflow

    def mark_unsynced(self, integration_id: str, remote_ids: Collection[str]) -> int:
        """Flag mirrored workflows as gone remotely. Returns how many rows flipped."""

        if not remote_ids:
            return 0
        with self._lock:
            workflows = self._load_unlocked(_WORKFLOWS, WorkflowDefinition)
            flipped = 0
            for idx, wf in enumerate(workflows):
                if wf.integration_id != integration_id or wf.remote_id not in remote_ids:
                    continue
                if wf.synced:
                    workflows[idx] = wf.model_copy(update={"synced": False})
                    flipped += 1
            if flipped:
                self._save_unlocked(_WORKFLOWS, workflows)
            return flipped

    def update_workflow_stats(
        self,
        workflow_id: str,
        mutate: Callable[[WorkflowDefinition], WorkflowDefinition],
    ) -> WorkflowDefinition:
        """Apply ``mutate`` to a workflow row as one atomic read-modify-write."""

        with self._lock:
            workflows = self._load_unlocked(_WORKFLOWS, WorkflowDefinition)
            for idx, wf in enumerate(workflows):
                if wf.id == workflow_id:
                    updated = mutate(wf)
                    workflows[idx] = updated
                    self._save_unlocked(_WORKFLOWS, workflows)
                    return updated
        raise NotFound(f"Workflow not found: {workflow_id}")

    # -- executions -------------------------------------------------------

    def insert_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        with self._lock:
            executions = self._load_unlocked(_EXECUTIONS, ExecutionRecord)
            if any(e.id == record.id for e in executions):
                raise ValueError(f"Execution already exists: {record.id}")
            executions.append(record)
            self._save_unlocked(_EXECUTIONS, executions)
            return record

    def get_execution(
        self, execution_id: str, *, organization_id: str | None = None
    ) -> ExecutionRecord:
        with self._lock:
            for e in self._load_unlocked(_EXECUTIONS, ExecutionRecord):
                if e.id != execution_id:
                    continue
                if organization_id is not None and e.organization_id != organization_id:
                    break
                return e
        raise NotFound(f"Execution not found: {execution_id}")

    def list_executions(
        self,
        *,
        status: ExecutionStatus | None = None,
        workflow_id: str | None = None,
        organization_id: str | None = None,
    ) -> list[ExecutionRecord]:
        with self._lock:
            executions = self._load_unlocked(_EXECUTIONS, ExecutionRecord)
        if status is not None:
            executions = [e for e in executions if e.status == status]
        if workflow_id is not None:
            executions = [e for e in executions if e.workflow_id == workflow_id]
        if organization_id is not None:
            executions = [e for e in executions if e.organization_id == organization_id]
        return executions

    def set_remote_execution_id(
        self, execution_id: str, remote_execution_id: str | None
    ) -> ExecutionRecord:
        with self._lock:
            executions = self._load_unlocked(_EXECUTIONS, ExecutionRecord)
            for idx, e in enumerate(executions):
                if e.id != execution_id:
                    continue
                # A timeout written before the id arrived can still take it, so a
                # re-poll can resolve the real outcome.
                late_id = e.status == ExecutionStatus.TIMEOUT and e.remote_execution_id is None
                if e.is_terminal and not late_id:
                    raise ValueError(f"Execution {execution_id} is already {e.status.value}")
                updated = e.model_copy(update={"remote_execution_id": remote_execution_id})
                executions[idx] = updated
                self._save_unlocked(_EXECUTIONS, executions)
                return updated
        raise NotFound(f"Execution not found: {execution_id}")

    def update_terminal(
        self,
        record: ExecutionRecord,
        *,
        allow_from: Collection[ExecutionStatus] = (),
    ) -> ExecutionRecord | None:
        """Persist a terminal transition if the stored row is still open.

        Returns the stored record, or ``None`` when another writer already moved
        the row to a terminal state (other than one listed in ``allow_from``).
        """

        if not record.is_terminal:
            raise ValueError(f"Not a terminal status: {record.status.value}")
        with self._lock:
            executions = self._load_unlocked(_EXECUTIONS, ExecutionRecord)
            for idx, current in enumerate(executions):
                if current.id != record.id:
                    continue
                if current.is_terminal and current.status not in allow_from:
                    return None
                if record.remote_execution_id is None and current.remote_execution_id:
                    record = record.model_copy(
                        update={"remote_execution_id": current.remote_execution_id}
                    )
                executions[idx] = record
                self._save_unlocked(_EXECUTIONS, executions)
                return record
        raise NotFound(f"Execution not found: {record.id}")

    # -- event mappings ---------------------------------------------------

    def upsert_event_mapping(self, mapping: EventMapping) -> EventMapping:
        with self._lock:
            items = self._load_unlocked(_EVENT_MAPPINGS, EventMapping)
            items = [m for m in items if m.id != mapping.id]
            items.append(mapping)
            self._save_unlocked(_EVENT_MAPPINGS, items)
            return mapping

    def list_event_mappings(
        self, *, organization_id: str, event_type: str, active_only: bool = True
    ) -> list[EventMapping]:
        with self._lock:
            items = self._load_unlocked(_EVENT_MAPPINGS, EventMapping)
        return [
            m
            for m in items
            if m.organization_id == organization_id
            and m.event_type == event_type
            and (m.active or not active_only)
        ]

    def touch_event_mapping(self, mapping_id: str, when: datetime) -> EventMapping:
        with self._lock:
            items = self._load_unlocked(_EVENT_MAPPINGS, EventMapping)
            for idx, m in enumerate(items):
                if m.id == mapping_id:
                    updated = m.model_copy(
                        update={"trigger_count": m.trigger_count + 1, "last_triggered_at": when}
                    )
                    items[idx] = updated
                    self._save_unlocked(_EVENT_MAPPINGS, items)
                    return updated
        raise NotFound(f"Event mapping not found: {mapping_id}")
