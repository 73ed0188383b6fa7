"""Console entrypoint shim.

The CLI is implemented in `automation_bridge.bridge.main`.
"""

from __future__ import annotations

from automation_bridge.bridge.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
