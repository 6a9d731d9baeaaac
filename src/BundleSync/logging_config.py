# === NAVMAP v1 ===
# {
#   "module": "BundleSync.logging_config",
#   "purpose": "Structured logging setup with JSON formatting and per-cycle correlation ids",
#   "sections": [
#     {"id": "context", "name": "Cycle Context", "anchor": "CTX", "kind": "helpers"},
#     {"id": "formatter", "name": "JSON Formatter", "anchor": "FMT", "kind": "api"},
#     {"id": "setup", "name": "Handler Setup", "anchor": "SET", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
"""
Structured Logging Utilities

Centralizes logging setup for the synchronization engine.  Every record
emitted while a cycle runs carries that cycle's correlation identifier, the
console handler prints either plain or JSON lines, and an optional rotating
file handler keeps JSONL logs for later inspection.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Dict, Iterator, Optional

from .settings import LoggingSettings

LOGGER_NAME = "BundleSync"

_CYCLE_ID: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("bundlesync_cycle_id", default=None)

# Attributes present on every LogRecord; anything else arrived through ``extra``.
_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime", "cycle_id"}


def generate_cycle_id() -> str:
    """Create a short identifier that links the log entries of one cycle.

    Examples:
        >>> len(generate_cycle_id())
        12
    """
    return uuid.uuid4().hex[:12]


def current_cycle_id() -> Optional[str]:
    return _CYCLE_ID.get()


@contextmanager
def cycle_context(cycle_id: str) -> Iterator[str]:
    """Bind ``cycle_id`` to log records emitted within the block."""

    token = _CYCLE_ID.set(cycle_id)
    try:
        yield cycle_id
    finally:
        _CYCLE_ID.reset(token)


class CycleContextFilter(logging.Filter):
    """Attach the active cycle id to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "cycle_id"):
            record.cycle_id = _CYCLE_ID.get()
        return True


class JSONFormatter(logging.Formatter):
    """Formatter emitting JSON structured logs.

    Examples:
        >>> formatter = JSONFormatter()
        >>> isinstance(formatter.format(logging.makeLogRecord({'msg': 'test'})), str)
        True
    """

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        log_obj: Dict[str, object] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "cycle_id": getattr(record, "cycle_id", None),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and key not in log_obj:
                log_obj[key] = value
        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_obj, default=str)


def setup_logging(config: Optional[LoggingSettings] = None) -> logging.Logger:
    """Configure console and optional rotating JSONL handlers.

    Handlers installed by a previous call are removed first, so repeated calls
    do not duplicate output.

    Examples:
        >>> logger = setup_logging(LoggingSettings(level="INFO"))
        >>> logger.name
        'BundleSync'
    """

    cfg = config or LoggingSettings()
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(cfg.level_int())

    for handler in list(logger.handlers):
        if getattr(handler, "_bundlesync_managed", False):
            logger.removeHandler(handler)
            handler.close()

    context_filter = CycleContextFilter()

    stream_handler = logging.StreamHandler(sys.stderr)
    if cfg.emit_json_logs:
        stream_handler.setFormatter(JSONFormatter())
    else:
        stream_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    stream_handler.addFilter(context_filter)
    stream_handler._bundlesync_managed = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)

    if cfg.log_dir is not None:
        cfg.log_dir.mkdir(parents=True, exist_ok=True)
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        file_handler = RotatingFileHandler(
            cfg.log_dir / f"bundlesync-{today}.jsonl",
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler.addFilter(context_filter)
        file_handler._bundlesync_managed = True  # type: ignore[attr-defined]
        logger.addHandler(file_handler)

    logger.propagate = True
    return logger


__all__ = [
    "LOGGER_NAME",
    "CycleContextFilter",
    "JSONFormatter",
    "current_cycle_id",
    "cycle_context",
    "generate_cycle_id",
    "setup_logging",
]
