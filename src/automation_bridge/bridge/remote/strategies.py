"""Ways of asking the remote engine to run a workflow.

The client tries its strategies in order and stops at the first success, so a
broken or rate-limited webhook does not block a run that the generic API path
could still start.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from automation_bridge.bridge.errors import RemoteUnavailable
from automation_bridge.bridge.models import WorkflowDefinition
from automation_bridge.bridge.remote.types import RemoteInvocationResult

if TYPE_CHECKING:
    from automation_bridge.bridge.remote.client import RemoteCatalogClient

logger = logging.getLogger(__name__)


def _execution_id_from(body: object) -> str | None:
    if not isinstance(body, dict):
        return None
    for key in ("executionId", "id"):
        value = body.get(key)
        if isinstance(value, (str, int)) and str(value).strip():
            return str(value).strip()
    nested = body.get("data")
    if isinstance(nested, dict):
        return _execution_id_from(nested)
    return None


class InvocationStrategy(Protocol):
    name: str

    def applies_to(self, workflow: WorkflowDefinition) -> bool: ...

    def invoke(
        self,
        client: RemoteCatalogClient,
        workflow: WorkflowDefinition,
        input_data: dict[str, Any],
    ) -> RemoteInvocationResult: ...


class WebhookStrategy:
    """POST the input to the workflow's own webhook URL.

    Any 2xx counts as success. The response body may carry an execution id.
    """

    name = "webhook"

    def applies_to(self, workflow: WorkflowDefinition) -> bool:
        return bool((workflow.webhook_url or "").strip())

    def invoke(
        self,
        client: RemoteCatalogClient,
        workflow: WorkflowDefinition,
        input_data: dict[str, Any],
    ) -> RemoteInvocationResult:
        url = (workflow.webhook_url or "").strip()
        if not url:
            raise RemoteUnavailable(f"Workflow {workflow.id} has no webhook URL")
        resp = client.post_json(url, input_data, authenticated=False)
        if not resp.ok:
            raise RemoteUnavailable(
                f"Webhook returned HTTP {resp.status_code}", status_code=resp.status_code
            )
        try:
            body = resp.json()
        except ValueError:
            body = None
        return RemoteInvocationResult(strategy=self.name, remote_execution_id=_execution_id_from(body))


class DirectRunStrategy:
    """POST to the generic ``/workflows/{id}/run`` endpoint.

    Success needs a 2xx *and* an execution id in the response.
    """

    name = "direct_run"

    def applies_to(self, workflow: WorkflowDefinition) -> bool:
        return bool(workflow.remote_id.strip())

    def invoke(
        self,
        client: RemoteCatalogClient,
        workflow: WorkflowDefinition,
        input_data: dict[str, Any],
    ) -> RemoteInvocationResult:
        url = client.api_url(f"workflows/{workflow.remote_id}/run")
        resp = client.post_json(url, {"data": input_data}, authenticated=True)
        if not resp.ok:
            message = f"Run endpoint returned HTTP {resp.status_code}"
            detail = (resp.text or "").strip()
            if detail:
                message = f"{message}: {detail}"
            raise RemoteUnavailable(message, status_code=resp.status_code)
        try:
            body = resp.json()
        except ValueError:
            body = None
        execution_id = _execution_id_from(body)
        if execution_id is None:
            raise RemoteUnavailable(
                "Run endpoint did not return an execution id", status_code=resp.status_code
            )
        return RemoteInvocationResult(strategy=self.name, remote_execution_id=execution_id)


def default_strategies() -> list[InvocationStrategy]:
    return [WebhookStrategy(), DirectRunStrategy()]
