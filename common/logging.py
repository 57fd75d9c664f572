"""
Command Center — Structured Logging

Every orchestration module logs through a child of the ``cmdctr`` logger
and every line is one JSON object. Two sources of structured fields are
merged into the entry:

  - per call:    ``extra={"structured": {...}}`` (or ``log_event``)
  - per scope:   ``log_context(task_id=..., worker_id=...)``; fields bound
                 here stick to every line logged inside the block,
                 including from the worker's own code. Scopes are
                 contextvars, so concurrent asyncio tasks do not leak
                 fields into each other.

Usage:
    from common.logging import configure_logging, get_logger, log_context

    configure_logging(level="INFO")
    log = get_logger("orchestrator")
    with log_context(task_id="task_abc", worker_id="wrk_1"):
        log.info("Executing")
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Iterator

ROOT_LOGGER = "cmdctr"
DEFAULT_SERVICE = "cmdctr_orchestration"

_bound: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "cmdctr_log_context", default={},
)


@contextlib.contextmanager
def log_context(**fields: Any) -> Iterator[dict[str, Any]]:
    """Bind correlation fields for the duration of the block. Nested blocks merge."""
    merged = {**_bound.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _bound.set(merged)
    try:
        yield merged
    finally:
        _bound.reset(token)


def current_context() -> dict[str, Any]:
    return dict(_bound.get())


# ═══════════════════════════════════════════════════════════════════
# JSON Formatter
# ═══════════════════════════════════════════════════════════════════

class JSONFormatter(logging.Formatter):
    """
    One JSON object per record:

      timestamp, level, logger, message, service.name, service.version,
      then bound context fields, then per-call structured fields (which
      win on collision), then exception.type / exception.message.
    """

    def __init__(self, service_name: str = DEFAULT_SERVICE):
        super().__init__()
        self.service_name = service_name
        self.service_version = os.environ.get("CMDCTR_VERSION", "0.1.0")

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service.name": self.service_name,
            "service.version": self.service_version,
        }
        entry.update(_bound.get())
        entry.update(getattr(record, "structured", None) or {})

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, _ = record.exc_info
            entry["exception.type"] = exc_type.__name__
            entry["exception.message"] = str(exc)

        return json.dumps(entry, default=str)


# ═══════════════════════════════════════════════════════════════════
# Setup
# ═══════════════════════════════════════════════════════════════════

def _level(name: str) -> int:
    value = logging.getLevelName(name.upper())
    return value if isinstance(value, int) else logging.INFO


def configure_logging(
    level: str = "INFO",
    stream: Any = None,
    service_name: str = DEFAULT_SERVICE,
) -> logging.Logger:
    """
    Route the ``cmdctr`` namespace to one JSON handler on ``stream``
    (default stderr). Safe to call repeatedly: previous handlers are
    replaced, child loggers are reset to inherit, and nothing
    propagates to the Python root logger.
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.handlers.clear()
    root.setLevel(_level(level))
    root.propagate = False

    prefix = ROOT_LOGGER + "."
    for name, obj in list(logging.Logger.manager.loggerDict.items()):
        if name.startswith(prefix) and isinstance(obj, logging.Logger):
            obj.handlers.clear()
            obj.setLevel(logging.NOTSET)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter(service_name=service_name))
    root.addHandler(handler)
    return root


def get_logger(name: str = "") -> logging.Logger:
    """``get_logger("directory")`` → the ``cmdctr.directory`` logger."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}" if name else ROOT_LOGGER)


def log_event(
    logger: logging.Logger,
    level: int,
    action: str,
    exc_info: Any = None,
    **fields: Any,
) -> None:
    """Log ``action`` as the message and as an ``action`` field alongside ``fields``."""
    if logger.isEnabledFor(level):
        logger.log(level, action, exc_info=exc_info,
                   extra={"structured": {"action": action, **fields}})
