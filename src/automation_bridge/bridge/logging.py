"""Structured logging for the bridge.

Every line is a JSON object. Code working on one execution or workflow binds
those ids with :func:`log_context`, and :class:`BridgeContextFilter` copies
them onto each record emitted inside the block, including records from the
HTTP client and the store.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

CONTEXT_FIELDS: tuple[str, ...] = (
    "execution_id",
    "workflow_id",
    "organization_id",
    "event_type",
)

_context: ContextVar[dict[str, str]] = ContextVar("automation_bridge_log_context", default={})

_STANDARD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


@contextmanager
def log_context(**fields: str | None) -> Iterator[None]:
    """Bind context ids for records logged inside the block. ``None`` values are skipped."""

    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown log context fields: {sorted(unknown)}")
    merged = {**_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _context.set(merged)
    try:
        yield
    finally:
        _context.reset(token)


def current_context() -> dict[str, str]:
    return dict(_context.get())


class BridgeContextFilter(logging.Filter):
    """Attach bound context ids to a record unless the call already passed them."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        for key, value in _context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """Render a record as one JSON line; non-standard attributes go under ``extra``."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str) -> None:
    """Send JSON lines to stdout at ``level``."""

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(BridgeContextFilter())

    root.addHandler(handler)
    root.setLevel(level.upper())

    # urllib3 logs one line per connection at DEBUG.
    for name in ("urllib3", "requests"):
        logging.getLogger(name).setLevel(max(root.level, logging.INFO))
