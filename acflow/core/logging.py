"""Structured JSON logging and per-solve ID tagging."""

from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar
from typing import Any

from acflow.config import settings

solve_id_var: ContextVar[str] = ContextVar("solve_id", default="")


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter with solve ID injection."""

    def format(self, record: logging.LogRecord) -> str:
        import json

        log_entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        sid = solve_id_var.get("")
        if sid:
            log_entry["solve_id"] = sid

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Include extra fields
        for key in ("method", "iteration", "active", "reactive", "bus", "edit"):
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val

        return json.dumps(log_entry)


def new_solve_id() -> str:
    """Create a short solve ID and make it current for this context."""
    sid = str(uuid.uuid4())[:8]
    solve_id_var.set(sid)
    return sid


def setup_logging(json_format: bool | None = None, level: str | None = None) -> None:
    """Configure root logger. Use json_format=True for machine-readable logs.

    Unset arguments fall back to ACFLOW_LOG_JSON and ACFLOW_LOG_LEVEL.
    """
    if json_format is None:
        json_format = settings.log_json
    root = logging.getLogger()
    root.setLevel(level or settings.log_level)

    handler = logging.StreamHandler()
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    # Remove existing handlers to avoid duplicates
    root.handlers.clear()
    root.addHandler(handler)
