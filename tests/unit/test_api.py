from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from automation_bridge.bridge.models import ExecutionRecord, ExecutionStatus, Integration
from automation_bridge.bridge.services import BridgeServices, build_services
from automation_bridge.server.app import create_app
from automation_bridge.server.config import ServerSettings

BASE = "https://n8n.test/api/v1"
ORG_HEADERS = {"X-Organization-Id": "org-1", "X-User-Id": "user-1"}


@pytest.fixture
def settings(monkeypatch, tmp_path: Path) -> ServerSettings:
    monkeypatch.setenv("REMOTE_ENGINE_API_URL", BASE)
    monkeypatch.setenv("REMOTE_ENGINE_API_KEY", "test-key")
    monkeypatch.setenv("REMOTE_ENGINE_WEBHOOK_BASE_URL", "https://n8n.test")
    monkeypatch.setenv("BRIDGE_STATE_PATH", str(tmp_path / "state"))
    monkeypatch.setenv("BRIDGE_RECONCILE_MAX_ATTEMPTS", "2")
    monkeypatch.setenv("BRIDGE_RECONCILE_INTERVAL_MS", "0")
    monkeypatch.setenv("BRIDGE_SWEEP_ENABLED", "false")
    return ServerSettings(_env_file=None)


@pytest.fixture
def services(settings, fake_session) -> BridgeServices:
    services = build_services(settings, session=fake_session)
    services.store.upsert_integration(Integration(id="int-1", organization_id="org-1"))
    return services


@pytest.fixture
def client(settings, services) -> Iterator[TestClient]:
    with TestClient(create_app(settings, services=services)) as test_client:
        yield test_client


def _catalog(fake_session, respond) -> None:
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
                        "nodes": [{"type": "n8n-nodes-base.scheduleTrigger"}],
                    }
                ]
            },
        ),
    )


def _synced_workflow_id(client: TestClient) -> str:
    client.post("/api/integrations/int-1/sync", headers=ORG_HEADERS)
    [workflow] = client.get("/api/workflows", headers=ORG_HEADERS).json()
    return workflow["id"]


def test_health(client, fake_session, respond) -> None:
    fake_session.add("GET", f"{BASE}/workflows", respond(200, {"data": []}))

    body = client.get("/api/health").json()

    assert body == {"status": "ok", "connected": True, "instance_url": BASE, "error": None}


def test_openapi_is_served(client) -> None:
    assert client.get("/api/openapi.json").status_code == 200


def test_sync_and_list(client, fake_session, respond) -> None:
    _catalog(fake_session, respond)

    resp = client.post("/api/integrations/int-1/sync", headers=ORG_HEADERS)

    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "synced": 1,
        "added": 1,
        "updated": 0,
        "removed": 0,
        "errors": [],
    }
    workflows = client.get("/api/workflows", headers=ORG_HEADERS).json()
    assert [w["trigger_type"] for w in workflows] == ["schedule"]
    assert client.get("/api/workflows", headers={"X-Organization-Id": "org-2"}).json() == []


def test_sync_remote_failure_is_reported_in_body(client, fake_session, respond) -> None:
    fake_session.add("GET", f"{BASE}/workflows", respond(500, {}))

    body = client.post("/api/integrations/int-1/sync", headers=ORG_HEADERS).json()

    assert body["success"] is False
    assert body["errors"] == ["Sync failed: GET workflows returned HTTP 500"]


def test_unknown_integration_is_404(client) -> None:
    resp = client.post("/api/integrations/int-9/sync", headers=ORG_HEADERS)

    assert resp.status_code == 404


def test_missing_tenant_header_is_rejected(client) -> None:
    assert client.get("/api/workflows").status_code == 422


def test_workflow_from_other_tenant_is_404(client, fake_session, respond) -> None:
    _catalog(fake_session, respond)
    workflow_id = _synced_workflow_id(client)

    resp = client.get(f"/api/workflows/{workflow_id}", headers={"X-Organization-Id": "org-2"})

    assert resp.status_code == 404


def test_execute_then_background_reconcile(client, services, fake_session, respond) -> None:
    _catalog(fake_session, respond)
    workflow_id = _synced_workflow_id(client)
    fake_session.add("POST", f"{BASE}/workflows/w1/run", respond(200, {"executionId": "e1"}))
    fake_session.add(
        "GET",
        f"{BASE}/executions/e1",
        respond(
            200,
            {
                "id": "e1",
                "finished": True,
                "status": "success",
                "startedAt": "2025-01-01T00:00:00Z",
                "stoppedAt": "2025-01-01T00:00:02Z",
            },
        ),
    )

    resp = client.post(
        f"/api/workflows/{workflow_id}/execute",
        headers=ORG_HEADERS,
        json={"input_data": {"day": "mon"}},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["remote_execution_id"] == "e1"
    assert body["error"] is None

    assert client.app.state.worker.wait(timeout=5)
    execution = client.get(f"/api/executions/{body['execution_id']}", headers=ORG_HEADERS).json()
    assert execution["status"] == "completed"
    assert execution["triggered_by"] == "user-1"
    assert execution["execution_time_ms"] == 2000

    workflow = client.get(f"/api/workflows/{workflow_id}", headers=ORG_HEADERS).json()
    assert workflow["total_executions"] == 1
    assert workflow["avg_execution_time_ms"] == 2000.0


def test_execute_dispatch_failure_returns_error(client, fake_session, respond) -> None:
    _catalog(fake_session, respond)
    workflow_id = _synced_workflow_id(client)
    fake_session.add("POST", f"{BASE}/workflows/w1/run", respond(502, text="bad gateway"))

    body = client.post(
        f"/api/workflows/{workflow_id}/execute", headers=ORG_HEADERS, json={}
    ).json()

    assert "HTTP 502" in body["error"]
    execution = client.get(f"/api/executions/{body['execution_id']}", headers=ORG_HEADERS).json()
    assert execution["status"] == "failed"


def test_execute_when_not_configured_is_409(monkeypatch, tmp_path: Path, fake_session) -> None:
    monkeypatch.setenv("REMOTE_ENGINE_API_URL", BASE)
    monkeypatch.setenv("REMOTE_ENGINE_API_KEY", "REPLACE_WITH_KEY")
    monkeypatch.setenv("BRIDGE_STATE_PATH", str(tmp_path / "state"))
    monkeypatch.setenv("BRIDGE_SWEEP_ENABLED", "false")
    settings = ServerSettings(_env_file=None)
    services = build_services(settings, session=fake_session)
    services.store.upsert_integration(Integration(id="int-1", organization_id="org-1"))

    with TestClient(create_app(settings, services=services)) as client:
        sync = client.post("/api/integrations/int-1/sync", headers=ORG_HEADERS)
        health = client.get("/api/health").json()

    assert sync.status_code == 409
    assert sync.json()["detail"] == "integration not connected"
    assert health["connected"] is False
    assert fake_session.calls == []


def test_reconcile_endpoint(client, services, fake_session, respond) -> None:
    _catalog(fake_session, respond)
    workflow_id = _synced_workflow_id(client)
    fake_session.add("POST", f"{BASE}/workflows/w1/run", respond(200, {"executionId": "e1"}))
    fake_session.add(
        "GET", f"{BASE}/executions/e1", respond(200, {"id": "e1", "status": "running"})
    )
    dispatched = services.dispatcher.dispatch(workflow_id, "org-1", "user-1")

    resp = client.post(
        f"/api/executions/{dispatched.execution_id}/reconcile",
        headers=ORG_HEADERS,
        params={"max_attempts": 1, "interval_ms": 0},
    )

    assert resp.status_code == 200
    assert resp.json()["status"] == ExecutionStatus.TIMEOUT.value

    fake_session.routes[("GET", f"{BASE}/executions/e1")] = [
        respond(200, {"id": "e1", "finished": True, "status": "success"})
    ]
    repolled = client.post(
        f"/api/executions/{dispatched.execution_id}/reconcile",
        headers=ORG_HEADERS,
        params={"repoll": True, "max_attempts": 1, "interval_ms": 0},
    )

    assert repolled.json()["status"] == "completed"


@pytest.mark.parametrize(
    "params", [{"max_attempts": 0}, {"max_attempts": -3}, {"interval_ms": -1}]
)
def test_reconcile_rejects_bad_bounds(client, services, params) -> None:
    services.store.insert_execution(
        ExecutionRecord(
            id="x1",
            workflow_id="wf-1",
            organization_id="org-1",
            triggered_by="user-1",
            status=ExecutionStatus.RUNNING,
            remote_execution_id="e1",
            started_at=datetime(2025, 1, 1, tzinfo=UTC),
        )
    )

    resp = client.post("/api/executions/x1/reconcile", headers=ORG_HEADERS, params=params)

    assert resp.status_code == 422
    assert services.store.get_execution("x1").status == ExecutionStatus.RUNNING


def test_reconcile_while_dispatch_in_flight_is_409(client, services, fake_session, respond) -> None:
    _catalog(fake_session, respond)
    workflow_id = _synced_workflow_id(client)
    answers: list[int] = []

    def run(method, url, **kwargs):
        [running] = services.store.list_executions(status=ExecutionStatus.RUNNING)
        resp = client.post(
            f"/api/executions/{running.id}/reconcile",
            headers=ORG_HEADERS,
            params={"max_attempts": 1, "interval_ms": 0},
        )
        answers.append(resp.status_code)
        return respond(200, {"executionId": "e1"})

    fake_session.add("POST", f"{BASE}/workflows/w1/run", run)

    result = services.dispatcher.dispatch(workflow_id, "org-1", "user-1")

    assert answers == [409]
    record = services.store.get_execution(result.execution_id)
    assert record.status == ExecutionStatus.RUNNING
    assert record.remote_execution_id == "e1"


def test_events_endpoint(client, fake_session, respond) -> None:
    _catalog(fake_session, respond)
    workflow_id = _synced_workflow_id(client)
    fake_session.add("POST", f"{BASE}/workflows/w1/run", respond(200, {"executionId": "e7"}))
    fake_session.add(
        "GET", f"{BASE}/executions/e7", respond(200, {"id": "e7", "finished": True, "status": "success"})
    )

    mapping = client.post(
        "/api/event-mappings",
        headers=ORG_HEADERS,
        json={
            "event_type": "order.created",
            "workflow_id": workflow_id,
            "payload_transform": {"orderId": "order.id"},
        },
    )
    assert mapping.status_code == 200
    assert mapping.json()["workflow_name"] == "Daily Report"

    resp = client.post(
        "/api/events/order.created", headers=ORG_HEADERS, json={"order": {"id": 42}}
    )

    body = resp.json()
    assert body["triggered"] == 1
    assert len(body["execution_ids"]) == 1
    run_call = fake_session.calls_to("POST", f"{BASE}/workflows/w1/run")[0]
    assert run_call["json"] == {"data": {"orderId": 42}}
    assert client.app.state.worker.wait(timeout=5)
