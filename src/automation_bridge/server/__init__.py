"""REST API over the bridge services.

Run locally with `automation-bridge serve`.
"""

from automation_bridge.server.app import create_app

__all__ = ["create_app"]
