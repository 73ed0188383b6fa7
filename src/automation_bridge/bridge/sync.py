"""Reconcile the remote workflow catalog into the local mirror.

Semantics:
- remote workflows already mirrored are updated in place
- new remote workflows are inserted with zeroed counters
- mirrored workflows missing remotely are flagged ``synced=False``, never deleted
- a failed remote fetch aborts before any local write
- a failed row write is reported and the remaining rows still run

Re-running after a partial failure converges on the same end state.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from automation_bridge.bridge.errors import RemoteUnavailable
from automation_bridge.bridge.models import TriggerType, WorkflowDefinition
from automation_bridge.bridge.remote.client import RemoteCatalogClient
from automation_bridge.bridge.remote.types import RemoteWorkflow
from automation_bridge.bridge.store import MirrorStore

logger = logging.getLogger(__name__)

# Checked in order for each node; the first node that matches anything wins.
_TRIGGER_MARKERS: tuple[tuple[tuple[str, ...], TriggerType], ...] = (
    (("webhook",), TriggerType.WEBHOOK),
    (("schedule", "cron"), TriggerType.SCHEDULE),
    (("email",), TriggerType.EMAIL),
    (("form",), TriggerType.FORM),
    (("chat",), TriggerType.CHAT),
)


def detect_trigger_type(node_types: Iterable[str]) -> TriggerType:
    """Guess how a workflow is started from its node type strings."""

    for node_type in node_types:
        lowered = (node_type or "").lower()
        for markers, trigger_type in _TRIGGER_MARKERS:
            if any(marker in lowered for marker in markers):
                return trigger_type
    return TriggerType.MANUAL


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(slots=True)
class SyncResult:
    success: bool = False
    synced: int = 0
    added: int = 0
    updated: int = 0
    removed: int = 0
    errors: list[str] = field(default_factory=list)


class CatalogSynchronizer:
    def __init__(
        self,
        *,
        client: RemoteCatalogClient,
        store: MirrorStore,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._client = client
        self._store = store
        self._clock = clock

    def sync(self, integration_id: str, organization_id: str) -> SyncResult:
        """Mirror the remote catalog for one integration.

        Raises:
            NotFound: the integration does not exist for this organization.
            IntegrationNotConfigured: no remote URL/credential is available.
        """

        integration = self._store.get_integration(integration_id, organization_id=organization_id)
        result = SyncResult()

        try:
            remote_workflows = self._client.list_workflows()
        except RemoteUnavailable as e:
            logger.error(
                "Sync aborted: remote catalog unavailable",
                extra={"integration_id": integration.id, "error": str(e)},
            )
            result.errors.append(f"Sync failed: {e}")
            return result

        now = self._clock()
        local_ids = self._store.mirrored_remote_ids(integration.id)
        remote_ids = {wf.id for wf in remote_workflows}

        for remote in remote_workflows:
            try:
                added = self._apply(remote, integration.id, integration.organization_id, now)
            except Exception as e:
                logger.exception(
                    "Failed to mirror workflow",
                    extra={"integration_id": integration.id, "remote_id": remote.id},
                )
                result.errors.append(f"Failed to sync {remote.name or remote.id}: {e}")
                continue
            if added:
                result.added += 1
            else:
                result.updated += 1
            result.synced += 1

        for remote_id in sorted(local_ids - remote_ids):
            try:
                result.removed += self._store.mark_unsynced(integration.id, [remote_id])
            except Exception as e:
                logger.exception(
                    "Failed to mark workflow unsynced",
                    extra={"integration_id": integration.id, "remote_id": remote_id},
                )
                result.errors.append(f"Failed to mark {remote_id} as removed: {e}")

        self._store.touch_integration_sync(integration.id, now)
        result.success = not result.errors

        logger.info(
            "Catalog synced",
            extra={
                "integration_id": integration.id,
                "synced": result.synced,
                "added": result.added,
                "updated": result.updated,
                "removed": result.removed,
                "errors": len(result.errors),
            },
        )
        return result

    def _apply(
        self,
        remote: RemoteWorkflow,
        integration_id: str,
        organization_id: str,
        now: datetime,
    ) -> bool:
        """Insert or update one mirrored row. Returns True when a row was inserted."""

        webhook_path = remote.webhook_path()
        fields = {
            "name": remote.name,
            "active": remote.active,
            "trigger_type": detect_trigger_type(remote.node_types),
            "tags": sorted(set(remote.tags)),
            "webhook_url": self._client.webhook_url(webhook_path) if webhook_path else None,
            "synced": True,
            "last_synced_at": now,
        }

        existing = self._store.find_workflow_by_remote_id(integration_id, remote.id)
        if existing is not None:
            self._store.upsert_workflow(existing.model_copy(update=fields))
            return False

        self._store.upsert_workflow(
            WorkflowDefinition(
                id=uuid.uuid4().hex,
                integration_id=integration_id,
                organization_id=organization_id,
                remote_id=remote.id,
                **fields,
            )
        )
        return True
