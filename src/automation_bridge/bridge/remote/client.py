"""HTTP client for the remote automation engine.

Stateless: every method is one request/response mapping (plus paging for the
workflow list). Failures are raised as the typed errors in
:mod:`automation_bridge.bridge.errors`, never returned as sentinel values.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from automation_bridge.bridge.config import BridgeSettings
from automation_bridge.bridge.errors import IntegrationNotConfigured, NotFound, RemoteUnavailable
from automation_bridge.bridge.models import WorkflowDefinition
from automation_bridge.bridge.remote.strategies import InvocationStrategy, default_strategies
from automation_bridge.bridge.remote.types import (
    HealthStatus,
    RemoteExecution,
    RemoteInvocationResult,
    RemoteWorkflow,
)

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-N8N-API-KEY"
_PAGE_SIZE = 100
# Guards against a remote that keeps returning the same cursor.
_MAX_PAGES = 1000


class RemoteCatalogClient:
    """Thin wrapper around the remote engine REST API."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        webhook_base_url: str = "",
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
        strategies: list[InvocationStrategy] | None = None,
    ) -> None:
        self._base_url = base_url.strip().rstrip("/")
        self._api_key = api_key.strip()
        self._webhook_base_url = webhook_base_url.strip().rstrip("/")
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/json",
                "User-Agent": "automation-bridge",
            }
        )
        self._strategies = strategies if strategies is not None else default_strategies()

    @classmethod
    def from_settings(
        cls, settings: BridgeSettings, *, session: requests.Session | None = None
    ) -> RemoteCatalogClient:
        return cls(
            base_url=settings.remote_api_url,
            api_key=settings.remote_api_key if settings.is_configured else "",
            webhook_base_url=settings.webhook_base_url,
            timeout_seconds=settings.http_timeout_seconds,
            session=session,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def is_configured(self) -> bool:
        return bool(self._base_url and self._api_key)

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise IntegrationNotConfigured()

    def api_url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def webhook_url(self, path: str) -> str:
        base = self._webhook_base_url or self._base_url
        return f"{base}/webhook/{path.strip('/')}"

    def _auth_headers(self) -> dict[str, str]:
        return {API_KEY_HEADER: self._api_key}

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            return self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning(
                "Remote engine request failed",
                extra={"method": method, "url": url, "error": str(e)},
            )
            raise RemoteUnavailable(f"{method} {url} failed: {e}") from e

    def _get_json(
        self, path: str, *, params: dict[str, Any] | None = None, not_found: bool = False
    ) -> Any:
        """GET a JSON body. A 404 raises :class:`NotFound` only when ``not_found`` is set."""

        url = self.api_url(path)
        resp = self._send("GET", url, headers=self._auth_headers(), params=params)
        if resp.status_code == 404 and not_found:
            raise NotFound(f"Remote resource not found: {path}")
        if not resp.ok:
            raise RemoteUnavailable(
                f"GET {path} returned HTTP {resp.status_code}", status_code=resp.status_code
            )
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteUnavailable(f"GET {path} returned invalid JSON") from e

    def post_json(
        self, url: str, payload: dict[str, Any], *, authenticated: bool
    ) -> requests.Response:
        """POST a JSON body; the caller interprets the status code."""

        headers = {"Content-Type": "application/json"}
        if authenticated:
            headers.update(self._auth_headers())
        return self._send("POST", url, headers=headers, json=payload)

    def list_workflows(self) -> list[RemoteWorkflow]:
        """Return every workflow defined on the remote engine, following cursors.

        Any non-2xx answer, 404 included, raises :class:`RemoteUnavailable`.
        """

        self._require_configured()

        workflows: list[RemoteWorkflow] = []
        cursor: str | None = None
        for _ in range(_MAX_PAGES):
            params: dict[str, Any] = {"limit": _PAGE_SIZE}
            if cursor:
                params["cursor"] = cursor
            body = self._get_json("workflows", params=params)

            items = body.get("data") if isinstance(body, dict) else body
            if not isinstance(items, list):
                raise RemoteUnavailable("Workflow list has unexpected shape")
            for item in items:
                if isinstance(item, dict) and item.get("id") is not None:
                    workflows.append(RemoteWorkflow.from_json(item))

            next_cursor = body.get("nextCursor") if isinstance(body, dict) else None
            if not next_cursor or next_cursor == cursor:
                break
            cursor = str(next_cursor)

        logger.debug("Listed remote workflows", extra={"count": len(workflows)})
        return workflows

    def get_execution(self, remote_execution_id: str) -> RemoteExecution:
        """Fetch a remote execution. Raises :class:`NotFound` for unknown ids."""

        self._require_configured()
        body = self._get_json(
            f"executions/{remote_execution_id}", params={"includeData": "true"}, not_found=True
        )
        if not isinstance(body, dict):
            raise RemoteUnavailable("Execution payload has unexpected shape")
        execution = RemoteExecution.from_json(body)
        if not execution.id:
            execution = RemoteExecution(
                id=remote_execution_id,
                finished=execution.finished,
                status=execution.status,
                started_at=execution.started_at,
                stopped_at=execution.stopped_at,
                data=execution.data,
            )
        return execution

    def invoke(
        self, workflow: WorkflowDefinition, input_data: dict[str, Any]
    ) -> RemoteInvocationResult:
        """Start a run, trying each invocation strategy in order."""

        self._require_configured()

        failures: list[str] = []
        for strategy in self._strategies:
            if not strategy.applies_to(workflow):
                continue
            try:
                result = strategy.invoke(self, workflow, input_data)
            except RemoteUnavailable as e:
                logger.warning(
                    "Invocation strategy failed; trying next",
                    extra={
                        "strategy": strategy.name,
                        "workflow_id": workflow.id,
                        "remote_id": workflow.remote_id,
                        "error": str(e),
                    },
                )
                failures.append(f"{strategy.name}: {e}")
                continue

            logger.info(
                "Workflow invoked",
                extra={
                    "strategy": result.strategy,
                    "workflow_id": workflow.id,
                    "remote_execution_id": result.remote_execution_id,
                },
            )
            return result

        if not failures:
            raise RemoteUnavailable(f"No invocation strategy applies to workflow {workflow.id}")
        raise RemoteUnavailable("; ".join(failures))

    def check_health(self) -> HealthStatus:
        """Probe the remote API. Never raises."""

        if not self.is_configured:
            return HealthStatus(
                connected=False, instance_url=None, error=str(IntegrationNotConfigured())
            )
        try:
            resp = self._send(
                "GET", self.api_url("workflows"), headers=self._auth_headers(), params={"limit": 1}
            )
        except RemoteUnavailable as e:
            return HealthStatus(connected=False, instance_url=self._base_url, error=str(e))
        return HealthStatus(
            connected=resp.ok,
            instance_url=self._base_url,
            error=None if resp.ok else f"HTTP {resp.status_code}",
        )

    def close(self) -> None:
        self._session.close()
