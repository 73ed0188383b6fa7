"""Mirror, dispatch and reconcile workflows hosted on a remote automation engine."""

from automation_bridge.bridge.config import BridgeSettings
from automation_bridge.bridge.dispatch import DispatchResult, ExecutionDispatcher
from automation_bridge.bridge.errors import (
    BridgeError,
    IntegrationNotConfigured,
    NotFound,
    ReconcileTimeout,
    RemoteUnavailable,
)
from automation_bridge.bridge.reconcile import ExecutionReconciler, ReconcileResult
from automation_bridge.bridge.stats import StatisticsAggregator
from automation_bridge.bridge.sync import CatalogSynchronizer, SyncResult

__all__ = [
    "BridgeError",
    "BridgeSettings",
    "CatalogSynchronizer",
    "DispatchResult",
    "ExecutionDispatcher",
    "ExecutionReconciler",
    "IntegrationNotConfigured",
    "NotFound",
    "ReconcileResult",
    "ReconcileTimeout",
    "RemoteUnavailable",
    "StatisticsAggregator",
    "SyncResult",
]
