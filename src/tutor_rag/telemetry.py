"""Structured lifecycle events for ingestion, embedding and retrieval."""

from __future__ import annotations

import logging
import time
import traceback
from contextlib import contextmanager
from typing import Any, Iterator, Optional

LOGGER = logging.getLogger("tutor_rag.telemetry")


def _format_exception(error: BaseException) -> str:
    return "".join(traceback.format_exception(error.__class__, error, error.__traceback__))


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    session_id: str | None = None,
    course_id: str | None = None,
    document_id: str | None = None,
    duration_ms: float | None = None,
    exc: BaseException | str | None = None,
    details: dict[str, Any] | None = None,
    extra: dict[str, Any] | None = None,
    **payload: Any,
) -> None:
    """Emit a structured log event with the agreed-upon schema."""

    logger = logger or LOGGER
    event: dict[str, Any] = {"step": step, "module": logger.name}
    if session_id:
        event["session_id"] = session_id
    if course_id:
        event["course_id"] = course_id
    if document_id:
        event["document_id"] = document_id
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 3)
    if details is not None:
        event["details"] = details
    if extra:
        event.update(extra)
    event.update(payload)

    exc_info = None
    if exc is not None:
        if isinstance(exc, BaseException):
            event["exc"] = _format_exception(exc)
            exc_info = (exc.__class__, exc, exc.__traceback__)
        else:
            event["exc"] = str(exc)

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(event, exc_info=exc_info)


def emit_embeddings_event(
    *,
    model: str,
    count: int,
    duration_ms: float,
    attempts: int = 1,
    errors: list[str] | None = None,
) -> None:
    details = {
        "model": model,
        "count": count,
        "attempts": attempts,
        "errors": errors or [],
        "per_item_ms": round(duration_ms / count, 3) if count else None,
    }
    level = "warning" if errors else "info"
    log_event(LOGGER, "embeddings.compute", level=level, duration_ms=duration_ms, details=details)


def emit_cache_event(step: str, *, key: str | None = None, **details: Any) -> None:
    # hits and misses are high volume; keep them at debug
    level = "info" if step in {"cache.evict", "cache.sweep", "cache.clear"} else "debug"
    if key is not None:
        details["key"] = key
    log_event(LOGGER, step, level=level, details=details)


def emit_vectorstore_event(
    step: str,
    *,
    backend: str,
    count: int,
    course_id: str | None = None,
    document_id: str | None = None,
    error: BaseException | None = None,
) -> None:
    details = {"backend": backend, "count": count}
    level = "error" if error else "info"
    log_event(
        LOGGER,
        step,
        level=level,
        course_id=course_id,
        document_id=document_id,
        details=details,
        exc=error,
    )


def emit_retriever_event(
    *,
    query: str,
    course_id: str,
    limit: int,
    threshold: float,
    similarities: list[float],
    duration_ms: float,
) -> None:
    details = {
        "query_preview": query[:120],
        "limit": limit,
        "threshold": threshold,
        "count": len(similarities),
        "avg_similarity": round(sum(similarities) / len(similarities), 4) if similarities else None,
        "top_similarity": round(similarities[0], 4) if similarities else None,
    }
    log_event(LOGGER, "retriever.search", course_id=course_id, duration_ms=duration_ms, details=details)


def emit_prompt_event(
    *,
    variant: str,
    course_id: str,
    session_id: str | None,
    estimated_tokens: int,
    chunks: int,
    history_turns: int,
    truncated: bool,
) -> None:
    details = {
        "variant": variant,
        "estimated_tokens": estimated_tokens,
        "chunks": chunks,
        "history_turns": history_turns,
        "truncated": truncated,
    }
    level = "warning" if truncated else "info"
    log_event(LOGGER, "prompt.build", level=level, course_id=course_id, session_id=session_id, details=details)


def emit_chat_event(
    *,
    model: str,
    duration_ms: float,
    prompt_tokens: int | None = None,
    completion_tokens: int | None = None,
    error: BaseException | None = None,
) -> None:
    details = {
        "model": model,
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
    }
    level = "error" if error else "info"
    log_event(LOGGER, "chat.completion", level=level, duration_ms=duration_ms, details=details, exc=error)


def emit_ingest_event(
    step: str,
    *,
    document_id: str | None = None,
    course_id: str | None = None,
    duration_ms: float | None = None,
    error: BaseException | str | None = None,
    **details: Any,
) -> None:
    level = "error" if error else "info"
    log_event(
        LOGGER,
        step,
        level=level,
        course_id=course_id,
        document_id=document_id,
        duration_ms=duration_ms,
        details=details or None,
        exc=error,
    )


def emit_exception(
    *,
    module: str,
    error: BaseException,
    session_id: str | None = None,
    context: dict[str, Any] | None = None,
) -> None:
    log_event(
        logging.getLogger(module),
        "exception",
        level="error",
        session_id=session_id,
        details=context,
        exc=error,
    )


@contextmanager
def traced_duration(step: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> Iterator[None]:
    start = time.perf_counter()
    log_event(logger or LOGGER, f"{step}.start", level="debug", details=fields)
    try:
        yield
    except Exception as error:
        log_event(logger or LOGGER, f"{step}.error", level="error", details=fields, exc=error)
        raise
    finally:
        end = time.perf_counter()
        log_event(
            logger or LOGGER,
            f"{step}.complete",
            duration_ms=(end - start) * 1000.0,
            details=fields,
        )


__all__ = [
    "emit_cache_event",
    "emit_chat_event",
    "emit_embeddings_event",
    "emit_exception",
    "emit_ingest_event",
    "emit_prompt_event",
    "emit_retriever_event",
    "emit_vectorstore_event",
    "log_event",
    "traced_duration",
]
