"""Minimal views of remote engine payloads.

Only the fields the bridge reads are kept; everything else in the remote JSON
is ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# Statuses the remote engine reports once a run can no longer change.
_REMOTE_TERMINAL_STATUSES = frozenset({"success", "error", "failed", "crashed", "canceled"})


def parse_remote_datetime(value: object) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None


def _dig(obj: object, *keys: str) -> object:
    for key in keys:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


@dataclass(frozen=True, slots=True)
class RemoteNode:
    type: str
    name: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RemoteWorkflow:
    """A workflow definition as listed by the remote engine."""

    id: str
    name: str
    active: bool
    nodes: tuple[RemoteNode, ...] = ()
    tags: tuple[str, ...] = ()

    @classmethod
    def from_json(cls, obj: dict[str, Any]) -> RemoteWorkflow:
        nodes: list[RemoteNode] = []
        for raw in obj.get("nodes") or []:
            if not isinstance(raw, dict):
                continue
            params = raw.get("parameters")
            nodes.append(
                RemoteNode(
                    type=str(raw.get("type") or ""),
                    name=str(raw.get("name") or ""),
                    parameters=params if isinstance(params, dict) else {},
                )
            )

        tags: list[str] = []
        for raw_tag in obj.get("tags") or []:
            # Tags come back either as objects ({"id", "name"}) or bare strings.
            name = raw_tag.get("name") if isinstance(raw_tag, dict) else raw_tag
            if isinstance(name, str) and name.strip():
                tags.append(name.strip())

        return cls(
            id=str(obj["id"]),
            name=str(obj.get("name") or ""),
            active=bool(obj.get("active", False)),
            nodes=tuple(nodes),
            tags=tuple(tags),
        )

    @property
    def node_types(self) -> list[str]:
        return [n.type for n in self.nodes]

    def webhook_path(self) -> str | None:
        """Path of the first webhook node, if the workflow exposes one."""

        for node in self.nodes:
            if "webhook" not in node.type.lower():
                continue
            path = node.parameters.get("path")
            if isinstance(path, str) and path.strip():
                return path.strip().strip("/")
        return None


@dataclass(frozen=True, slots=True)
class RemoteExecution:
    """Status of one run on the remote engine."""

    id: str
    finished: bool
    status: str
    started_at: datetime | None = None
    stopped_at: datetime | None = None
    data: Any = None

    @classmethod
    def from_json(cls, obj: dict[str, Any]) -> RemoteExecution:
        return cls(
            id=str(obj.get("id") or ""),
            finished=bool(obj.get("finished", False)),
            status=str(obj.get("status") or "").lower(),
            started_at=parse_remote_datetime(obj.get("startedAt")),
            stopped_at=parse_remote_datetime(obj.get("stoppedAt")),
            data=obj.get("data"),
        )

    @property
    def is_finished(self) -> bool:
        # Some engine versions leave `finished` false on errored runs.
        return self.finished or self.status in _REMOTE_TERMINAL_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def duration_ms(self) -> int | None:
        if self.started_at is None or self.stopped_at is None:
            return None
        delta = self.stopped_at - self.started_at
        return max(0, int(delta.total_seconds() * 1000))

    @property
    def output(self) -> Any:
        last = _dig(self.data, "resultData", "lastNodeOutput")
        return last if last is not None else self.data

    @property
    def error_message(self) -> str:
        message = _dig(self.data, "resultData", "error", "message")
        if isinstance(message, str) and message.strip():
            return message
        return "Execution failed"


@dataclass(frozen=True, slots=True)
class RemoteInvocationResult:
    strategy: str
    remote_execution_id: str | None


@dataclass(frozen=True, slots=True)
class HealthStatus:
    connected: bool
    instance_url: str | None
    error: str | None = None
