"""Typed failures raised by the bridge.

Every remote or lookup failure surfaces as one of these; callers never have to
inspect raw HTTP responses or ``requests`` exceptions.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all bridge failures."""

    retriable: bool = False


class IntegrationNotConfigured(BridgeError):
    """No base URL or API credential is available for the remote engine."""

    retriable = False

    def __init__(self, message: str = "integration not connected") -> None:
        super().__init__(message)


class RemoteUnavailable(BridgeError):
    """Network failure or non-2xx response from the remote engine."""

    retriable = True

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFound(BridgeError):
    """Unknown workflow, execution or integration id (locally or remotely)."""

    retriable = False


class ReconcileTimeout(BridgeError):
    """Polling gave up before the remote engine reported a terminal state.

    The reconciler reports a ``timeout`` status rather than raising. The CLI raises
    this so a timed-out run ends with a failing exit code.
    """

    retriable = True
