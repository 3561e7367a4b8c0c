"""
Structured logging for the chat pipeline.

Every record carries the request correlation id. Pipeline events go through
``log_event`` and name the chat session and topic they concern:

    log_event("safety_trigger", trigger_type="crisis", session_id=session.id)
    log_event("provider_fallback", session_id=session.id, resource_key="stress", error=str(exc))

Message text is never passed to log_event; log identifiers and topic keys only.
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any

# Set at the start of each chat request in main.py.
_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

EVENT_LOGGER_NAME = "mindfulbot.events"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s | %(message)s"


def new_correlation_id() -> str:
    return uuid.uuid4().hex


def set_correlation_id(cid: str) -> None:
    _correlation_id.set(cid)


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Event records put ``event``, ``session_id`` and ``resource_key`` at the top
    level; any other event fields are nested under ``detail``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": _correlation_id.get() or None,
        }
        event = getattr(record, "event", None)
        if event is not None:
            fields = dict(getattr(record, "fields", {}))
            payload["event"] = event
            payload["session_id"] = fields.pop("session_id", None)
            payload["resource_key"] = fields.pop("resource_key", None)
            if fields:
                payload["detail"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Install a single stdout handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if fmt.lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%H:%M:%S"))

    root.handlers.clear()
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_event(event: str, level: int = logging.INFO, **fields: Any) -> None:
    logging.getLogger(EVENT_LOGGER_NAME).log(
        level,
        event,
        extra={"event": event, "fields": fields},
    )


class Timer:
    """Wall-clock duration of a block, in milliseconds."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *_: Any) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000
