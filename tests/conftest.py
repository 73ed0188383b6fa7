"""Test configuration and fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest
import requests

from automation_bridge.bridge.models import Integration, WorkflowDefinition
from automation_bridge.bridge.remote.client import RemoteCatalogClient
from automation_bridge.bridge.stats import StatisticsAggregator
from automation_bridge.bridge.store import MirrorStore

BASE_URL = "https://n8n.test/api/v1"
ORG = "org-1"
INTEGRATION = "int-1"


def make_response(
    status_code: int = 200,
    json_body: Any = None,
    *,
    text: str | None = None,
) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status_code
    resp.reason = "OK" if status_code < 400 else "Error"
    if json_body is not None:
        resp._content = json.dumps(json_body).encode("utf-8")
        resp.headers["Content-Type"] = "application/json"
    else:
        resp._content = (text or "").encode("utf-8")
    return resp


# A canned response, an exception to raise, or a callable(method, url, **kwargs).
Handler = Any


class FakeSession(requests.Session):
    """A ``requests.Session`` that answers from scripted routes.

    Routes are keyed by ``(METHOD, url)`` (query string excluded). Each route is
    a list consumed in order; the last entry repeats.
    """

    def __init__(self) -> None:
        super().__init__()
        self.routes: dict[tuple[str, str], list[Handler]] = {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def add(self, method: str, url: str, *handlers: Handler) -> None:
        self.routes.setdefault((method.upper(), url), []).extend(handlers)

    def request(self, method: str, url: str, *args: Any, **kwargs: Any) -> requests.Response:  # type: ignore[override]
        self.calls.append((method.upper(), url, kwargs))
        handlers = self.routes.get((method.upper(), url))
        if not handlers:
            return make_response(404, {"message": "not found"})
        handler = handlers.pop(0) if len(handlers) > 1 else handlers[0]
        if isinstance(handler, Exception):
            raise handler
        if callable(handler) and not isinstance(handler, requests.Response):
            return handler(method, url, **kwargs)
        return handler

    def calls_to(self, method: str, url: str) -> list[dict[str, Any]]:
        return [kw for m, u, kw in self.calls if m == method.upper() and u == url]


class FixedClock:
    """Deterministic clock; ``advance`` moves it forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def remote_client(fake_session: FakeSession) -> RemoteCatalogClient:
    return RemoteCatalogClient(
        base_url=BASE_URL,
        api_key="test-key",
        webhook_base_url="https://n8n.test",
        session=fake_session,
    )


@pytest.fixture
def mock_client() -> Mock:
    client = Mock(spec=RemoteCatalogClient)
    client.is_configured = True
    client.webhook_url.side_effect = lambda path: f"https://n8n.test/webhook/{path}"
    return client


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store(tmp_path: Path) -> MirrorStore:
    store = MirrorStore(tmp_path / "bridge_state")
    store.upsert_integration(Integration(id=INTEGRATION, organization_id=ORG, name="Main"))
    return store


@pytest.fixture
def stats(store: MirrorStore, clock: FixedClock) -> StatisticsAggregator:
    return StatisticsAggregator(store=store, clock=clock)


@pytest.fixture
def workflow(store: MirrorStore) -> WorkflowDefinition:
    return store.upsert_workflow(
        WorkflowDefinition(
            id="wf-local-1",
            integration_id=INTEGRATION,
            organization_id=ORG,
            remote_id="w1",
            name="Daily Report",
            active=True,
        )
    )


@pytest.fixture
def respond() -> Callable[..., requests.Response]:
    """Build a canned ``requests.Response``."""

    return make_response
