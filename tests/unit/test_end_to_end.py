"""Sync, dispatch and reconcile against a scripted remote engine."""

from __future__ import annotations

from automation_bridge.bridge.dispatch import ExecutionDispatcher
from automation_bridge.bridge.models import ExecutionStatus, TriggerType
from automation_bridge.bridge.reconcile import ExecutionReconciler
from automation_bridge.bridge.sync import CatalogSynchronizer

BASE = "https://n8n.test/api/v1"


def test_sync_dispatch_reconcile(remote_client, fake_session, respond, store, stats, clock) -> None:
    fake_session.add(
        "GET",
        f"{BASE}/workflows",
        respond(
            200,
            {
                "data": [
                    {
                        "id": "w1",
                        "name": "Daily Report",
                        "active": True,
                        "nodes": [
                            {"type": "scheduleTrigger"},
                            {"type": "n8n-nodes-base.webhook", "parameters": {"path": "daily"}},
                        ],
                    }
                ]
            },
        ),
    )
    fake_session.add("POST", "https://n8n.test/webhook/daily", respond(500, {"message": "boom"}))
    fake_session.add("POST", f"{BASE}/workflows/w1/run", respond(200, {"executionId": "e1"}))
    fake_session.add(
        "GET",
        f"{BASE}/executions/e1",
        respond(200, {"id": "e1", "finished": False, "status": "running"}),
        respond(
            200,
            {
                "id": "e1",
                "finished": True,
                "status": "success",
                "startedAt": "2025-01-01T00:00:00.000Z",
                "stoppedAt": "2025-01-01T00:00:03.250Z",
                "data": {"resultData": {"lastNodeOutput": [{"json": {"sent": True}}]}},
            },
        ),
    )

    sync = CatalogSynchronizer(client=remote_client, store=store, clock=clock).sync("int-1", "org-1")
    assert sync.added == 1

    [workflow] = store.list_workflows(organization_id="org-1")
    assert workflow.trigger_type == TriggerType.SCHEDULE
    assert workflow.webhook_url == "https://n8n.test/webhook/daily"

    dispatcher = ExecutionDispatcher(client=remote_client, store=store, stats=stats, clock=clock)
    dispatched = dispatcher.dispatch(workflow.id, "org-1", "user-1", {"day": "mon"})

    record = store.get_execution(dispatched.execution_id)
    assert record.status == ExecutionStatus.RUNNING
    assert record.remote_execution_id == "e1"
    assert len(fake_session.calls_to("POST", "https://n8n.test/webhook/daily")) == 1

    reconciler = ExecutionReconciler(client=remote_client, store=store, stats=stats, clock=clock)
    result = reconciler.reconcile(dispatched.execution_id, max_attempts=5, interval_ms=0)

    assert result.status == ExecutionStatus.COMPLETED
    assert result.output_data == [{"json": {"sent": True}}]
    assert len(fake_session.calls_to("GET", f"{BASE}/executions/e1")) == 2

    workflow = store.get_workflow(workflow.id)
    assert (workflow.total_executions, workflow.successful_executions) == (1, 1)
    assert workflow.avg_execution_time_ms == 3250.0
