"""Logging utilities for the structure indexer.

Records may carry ``ctx_*`` attributes (document uid, run version); both
formatters render them so a warning can be traced back to its source file.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, MutableMapping, TextIO

import orjson

_DEFAULT_LEVEL = os.environ.get("CS_LOG_LEVEL", "INFO")
CONTEXT_PREFIX = "ctx_"


def _context_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {key: value for key, value in record.__dict__.items() if key.startswith(CONTEXT_PREFIX)}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, context fields included."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        payload.update(_context_fields(record))
        return orjson.dumps(payload, default=str).decode("utf-8")


class PlainFormatter(logging.Formatter):
    """Human readable lines with trailing ``key=value`` context."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context_fields(record)
        if not context:
            return line
        suffix = " ".join(f"{key[len(CONTEXT_PREFIX):]}={value}" for key, value in sorted(context.items()))
        return f"{line} [{suffix}]"


class ContextAdapter(logging.LoggerAdapter):
    """Attach fixed ``ctx_*`` fields to every record."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def document_logger(logger: logging.Logger, uid: str, version_id: str | None = None) -> ContextAdapter:
    context: dict[str, Any] = {f"{CONTEXT_PREFIX}doc": uid}
    if version_id:
        context[f"{CONTEXT_PREFIX}version"] = version_id
    return ContextAdapter(logger, context)


def configure_logging(
    level: str | int = _DEFAULT_LEVEL,
    use_json: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Route all records to one stderr handler."""
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter() if use_json else PlainFormatter())
    root.handlers = [handler]


def get_logger(name: str = "content_structure") -> logging.Logger:
    """Return configured logger, configuring root on first call."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


__all__ = [
    "JsonFormatter",
    "PlainFormatter",
    "ContextAdapter",
    "document_logger",
    "configure_logging",
    "get_logger",
]
