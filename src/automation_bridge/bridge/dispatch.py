"""Start workflow runs on behalf of users.

The local execution record is written *before* the remote call so that a
failed dispatch still leaves an inspectable, terminal record behind.

Dispatch is not idempotent: every call creates a new execution.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from automation_bridge.bridge.errors import IntegrationNotConfigured, RemoteUnavailable
from automation_bridge.bridge.logging import log_context
from automation_bridge.bridge.models import (
    ExecutionRecord,
    ExecutionStatus,
    TriggerSource,
    WorkflowDefinition,
)
from automation_bridge.bridge.remote.client import RemoteCatalogClient
from automation_bridge.bridge.stats import StatisticsAggregator
from automation_bridge.bridge.store import MirrorStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DispatchResult:
    execution_id: str
    remote_execution_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ExecutionDispatcher:
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
        self._lock = threading.Lock()
        self._invoking: set[str] = set()

    def is_invoking(self, execution_id: str) -> bool:
        """True while the remote call for this execution has not returned yet."""

        with self._lock:
            return execution_id in self._invoking

    def dispatch(
        self,
        workflow_id: str,
        organization_id: str,
        user_id: str,
        input_data: dict[str, Any] | None = None,
        trigger_source: TriggerSource = TriggerSource.MANUAL,
    ) -> DispatchResult:
        """Create a running execution and ask the remote engine to start it.

        Raises:
            NotFound: unknown workflow, or it belongs to another organization.
            IntegrationNotConfigured: no credentials, or the integration is disabled.
                Raised before any record is written; nothing was attempted.
        """

        workflow = self._store.get_workflow(workflow_id, organization_id=organization_id)
        if not self._client.is_configured:
            raise IntegrationNotConfigured()
        integration = self._store.get_integration(workflow.integration_id)
        if not integration.active:
            raise IntegrationNotConfigured(f"Integration {integration.id} is not active")

        payload = dict(input_data or {})
        record = self._store.insert_execution(
            ExecutionRecord(
                id=uuid.uuid4().hex,
                workflow_id=workflow.id,
                organization_id=organization_id,
                triggered_by=user_id,
                trigger_source=trigger_source,
                status=ExecutionStatus.RUNNING,
                input_data=payload,
                started_at=self._clock(),
            )
        )
        logger.info(
            "Execution created",
            extra={
                "execution_id": record.id,
                "workflow_id": workflow.id,
                "trigger_source": trigger_source.value,
            },
        )

        with self._lock:
            self._invoking.add(record.id)
        try:
            with log_context(
                execution_id=record.id, workflow_id=workflow.id, organization_id=organization_id
            ):
                return self._invoke(record, workflow, payload)
        finally:
            with self._lock:
                self._invoking.discard(record.id)

    def _invoke(
        self, record: ExecutionRecord, workflow: WorkflowDefinition, payload: dict[str, Any]
    ) -> DispatchResult:
        try:
            invocation = self._client.invoke(workflow, payload)
        except RemoteUnavailable as e:
            return self._fail(record, str(e))

        try:
            self._store.set_remote_execution_id(record.id, invocation.remote_execution_id)
        except ValueError as e:
            # Closed by a concurrent reconcile while the remote call was in flight.
            logger.warning(
                "Remote execution id not stored",
                extra={
                    "execution_id": record.id,
                    "remote_execution_id": invocation.remote_execution_id,
                    "error": str(e),
                },
            )
        return DispatchResult(
            execution_id=record.id, remote_execution_id=invocation.remote_execution_id
        )

    def _fail(self, record: ExecutionRecord, message: str) -> DispatchResult:
        failed = record.model_copy(
            update={
                "status": ExecutionStatus.FAILED,
                "error_message": message,
                "finished_at": self._clock(),
            }
        )
        stored = self._store.update_terminal(failed)
        if stored is not None:
            self._stats.record_terminal(record.workflow_id, ExecutionStatus.FAILED)
        logger.error(
            "Dispatch failed",
            extra={"execution_id": record.id, "workflow_id": record.workflow_id, "error": message},
        )
        return DispatchResult(execution_id=record.id, error=message)
