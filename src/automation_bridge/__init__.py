"""Automation Bridge.

Keeps a local mirror of workflows hosted on a remote automation engine:
- catalog sync (added / updated / removed)
- dispatch with webhook-first, API-fallback invocation
- reconciliation of asynchronous runs and per-workflow statistics
"""

__version__ = "0.1.0"

from automation_bridge.bridge.config import BridgeSettings

__all__ = ["__version__", "BridgeSettings"]
