"""JSON logging with course, document and session context on every record."""

from __future__ import annotations

import json
import logging
import logging.config
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

AUDIT_LOGGER_NAME = "tutor_rag.ingest.audit"
AUDIT_LOG_FILENAME = "ingest_audit.log"
CONTEXT_FIELDS = ("course_id", "document_id", "session_id")

_log_context: ContextVar[Dict[str, str]] = ContextVar("tutor_rag_log_context", default={})

# Attributes every LogRecord carries; anything else on a record came from ``extra=``.
_STANDARD_ATTRIBUTES = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


def current_log_context() -> Dict[str, str]:
    return dict(_log_context.get())


@contextmanager
def log_context(**fields: Optional[str]) -> Iterator[Dict[str, str]]:
    """Bind course/document/session identifiers for records logged inside the block.

    Unknown keys are rejected so a typo cannot silently create a new field.
    ``None`` values are skipped, and nested blocks extend the outer context.
    """

    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise ValueError(f"Unsupported log context fields: {sorted(unknown)}")
    merged = current_log_context()
    merged.update({key: str(value) for key, value in fields.items() if value is not None})
    token = _log_context.set(merged)
    try:
        yield merged
    finally:
        _log_context.reset(token)


class LogContextFilter(logging.Filter):
    """Copy the bound context onto records that do not already set those fields."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class MinimalJSONFormatter(logging.Formatter):
    """Serialize log records to a compact JSON string.

    Dict messages (the telemetry events) are merged into the top level. Context
    fields come last so that an event's own ``course_id`` wins over the bound one.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z")
        log_record: dict[str, Any] = {
            "ts": timestamp,
            "level": record.levelname,
            "module": record.name,
        }

        if isinstance(record.msg, dict):
            log_record.update(record.msg)
        elif message := record.getMessage():
            log_record["message"] = message

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRIBUTES or key.startswith("_"):
                continue
            log_record.setdefault(key, value)

        return json.dumps(log_record, ensure_ascii=False, default=str)


def configure_logging(level: str = "INFO", log_dir: str | Path = "logs") -> Path:
    """Install JSON console logging plus the ingestion audit file.

    Returns the audit log path. Both handlers carry :class:`LogContextFilter`,
    so ingestion audit lines and request logs share the same identifiers.
    """

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    audit_file = log_path / AUDIT_LOG_FILENAME

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"log_context": {"()": LogContextFilter}},
            "formatters": {"json": {"()": MinimalJSONFormatter}},
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                    "filters": ["log_context"],
                },
                "ingest_audit": {
                    "class": "logging.FileHandler",
                    "filename": str(audit_file),
                    "mode": "a",
                    "encoding": "utf-8",
                    "formatter": "json",
                    "filters": ["log_context"],
                },
            },
            "root": {"level": level.upper(), "handlers": ["console"]},
            "loggers": {
                AUDIT_LOGGER_NAME: {
                    "level": "INFO",
                    "handlers": ["ingest_audit"],
                    "propagate": False,
                },
                # chromadb and httpx log every request at INFO
                "chromadb": {"level": "WARNING"},
                "httpx": {"level": "WARNING"},
            },
        }
    )
    return audit_file


__all__ = [
    "AUDIT_LOGGER_NAME",
    "CONTEXT_FIELDS",
    "LogContextFilter",
    "MinimalJSONFormatter",
    "configure_logging",
    "current_log_context",
    "log_context",
]
