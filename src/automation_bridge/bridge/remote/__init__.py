"""HTTP adapter for the remote automation engine."""

from automation_bridge.bridge.remote.client import RemoteCatalogClient
from automation_bridge.bridge.remote.strategies import (
    DirectRunStrategy,
    InvocationStrategy,
    WebhookStrategy,
)
from automation_bridge.bridge.remote.types import (
    HealthStatus,
    RemoteExecution,
    RemoteInvocationResult,
    RemoteWorkflow,
)

__all__ = [
    "DirectRunStrategy",
    "HealthStatus",
    "InvocationStrategy",
    "RemoteCatalogClient",
    "RemoteExecution",
    "RemoteInvocationResult",
    "RemoteWorkflow",
    "WebhookStrategy",
]
