"""Dispatch workflows in response to application events.

Each active :class:`EventMapping` for an (organization, event type) pair gets
its own dispatch. One mapping failing does not stop the others.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from automation_bridge.bridge.dispatch import DispatchResult, ExecutionDispatcher
from automation_bridge.bridge.errors import BridgeError
from automation_bridge.bridge.logging import log_context
from automation_bridge.bridge.models import TriggerSource
from automation_bridge.bridge.store import MirrorStore

logger = logging.getLogger(__name__)

SYSTEM_USER = "system"


def get_nested_value(data: object, path: str) -> Any:
    current = data
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def apply_transform(data: dict[str, Any], transform: dict[str, str]) -> dict[str, Any]:
    """Build a payload of ``target key -> value at dotted source path``.

    Paths that do not resolve are left out.
    """

    result: dict[str, Any] = {}
    for target, source_path in transform.items():
        value = get_nested_value(data, source_path)
        if value is not None:
            result[target] = value
    return result


@dataclass(slots=True)
class EventTriggerResult:
    triggered: int = 0
    executions: list[DispatchResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class EventTrigger:
    def __init__(
        self,
        *,
        dispatcher: ExecutionDispatcher,
        store: MirrorStore,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._dispatcher = dispatcher
        self._store = store
        self._clock = clock

    def trigger(
        self, organization_id: str, event_type: str, event_data: dict[str, Any]
    ) -> EventTriggerResult:
        result = EventTriggerResult()
        mappings = self._store.list_event_mappings(
            organization_id=organization_id, event_type=event_type
        )
        if not mappings:
            return result

        for mapping in mappings:
            label = mapping.workflow_name or mapping.workflow_id
            payload = (
                apply_transform(event_data, mapping.payload_transform)
                if mapping.payload_transform
                else dict(event_data)
            )
            try:
                with log_context(event_type=event_type, organization_id=organization_id):
                    dispatched = self._dispatcher.dispatch(
                        mapping.workflow_id,
                        organization_id,
                        SYSTEM_USER,
                        payload,
                        TriggerSource.EVENT,
                    )
            except BridgeError as e:
                result.errors.append(f"{label}: {e}")
                continue

            result.executions.append(dispatched)
            if not dispatched.ok:
                result.errors.append(f"{label}: {dispatched.error}")
                continue

            result.triggered += 1
            self._store.touch_event_mapping(mapping.id, self._clock())

        logger.info(
            "Event processed",
            extra={
                "organization_id": organization_id,
                "event_type": event_type,
                "triggered": result.triggered,
                "errors": len(result.errors),
            },
        )
        return result
