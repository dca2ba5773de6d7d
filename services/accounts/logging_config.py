"""Logging setup for the account service.

Environment variables:
    LOG_FORMAT  – "json" for JSON lines, "text" for human-readable (default: "text")
    LOG_LEVEL   – root log level name (default: "INFO")
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from . import settings as _settings
from .request_context import RequestIdFilter

_TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] [%(request_id)s] %(message)s"


class _JsonFormatter(logging.Formatter):
    """One JSON object per record, request_id included when bound."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        rid = getattr(record, "request_id", None)
        if rid:
            payload["request_id"] = rid
        if record.exc_info and record.exc_info[1] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def build_handler(fmt: str | None = None) -> logging.Handler:
    fmt = (fmt or _settings.env_str("LOG_FORMAT", "text")).strip().lower()
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RequestIdFilter())
    if fmt == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    return handler


def configure_logging() -> None:
    """Configure the root logger from LOG_FORMAT and LOG_LEVEL."""
    level_name = _settings.env_str("LOG_LEVEL", "INFO").strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # reload-safe
    for h in root.handlers[:]:
        root.removeHandler(h)
    root.addHandler(build_handler())
