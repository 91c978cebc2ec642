from __future__ import annotations

import json
import logging

import pytest

from tutor_rag.logging_config import (
    AUDIT_LOGGER_NAME,
    LogContextFilter,
    MinimalJSONFormatter,
    configure_logging,
    current_log_context,
    log_context,
)
from tutor_rag.telemetry import emit_retriever_event, log_event, traced_duration


def _record(msg, **kwargs) -> logging.LogRecord:
    record = logging.LogRecord("tutor_rag.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in kwargs.items():
        setattr(record, key, value)
    return record


def test_formatter_merges_dict_messages() -> None:
    output = json.loads(MinimalJSONFormatter().format(_record({"step": "prompt.build", "course_id": "bio101"})))

    assert output["level"] == "INFO"
    assert output["module"] == "tutor_rag.test"
    assert output["step"] == "prompt.build"
    assert output["course_id"] == "bio101"
    assert output["ts"].endswith("Z")


def test_formatter_includes_plain_message_and_extras() -> None:
    output = json.loads(MinimalJSONFormatter().format(_record("hello", request_id="abc")))

    assert output["message"] == "hello"
    assert output["request_id"] == "abc"


def test_log_event_builds_structured_payload(caplog) -> None:
    logger = logging.getLogger("tutor_rag.test.events")

    with caplog.at_level(logging.INFO, logger="tutor_rag.test.events"):
        log_event(logger, "ingest.document.start", course_id="bio101", document_id="d1", duration_ms=1.23456, chunks=3)

    event = caplog.records[-1].msg
    assert event == {
        "step": "ingest.document.start",
        "module": "tutor_rag.test.events",
        "course_id": "bio101",
        "document_id": "d1",
        "duration_ms": 1.235,
        "chunks": 3,
    }


def test_retriever_event_summarises_similarities(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="tutor_rag.telemetry"):
        emit_retriever_event(
            query="What is photosynthesis?",
            course_id="bio101",
            limit=5,
            threshold=0.05,
            similarities=[0.8, 0.4],
            duration_ms=2.0,
        )

    details = caplog.records[-1].msg["details"]
    assert details["count"] == 2
    assert details["avg_similarity"] == 0.6
    assert details["top_similarity"] == 0.8


def test_traced_duration_logs_error_and_reraises(caplog) -> None:
    with caplog.at_level(logging.DEBUG, logger="tutor_rag.telemetry"):
        with pytest.raises(RuntimeError):
            with traced_duration("ingest.course", course_id="bio101"):
                raise RuntimeError("boom")

    steps = [record.msg["step"] for record in caplog.records]
    assert steps == ["ingest.course.start", "ingest.course.error", "ingest.course.complete"]


def test_configure_logging_writes_audit_file(tmp_path) -> None:
    configure_logging(log_dir=tmp_path)
    audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)

    audit_logger.info({"event": "ingest", "document_id": "d1", "chunk_count": 2})
    for handler in audit_logger.handlers:
        handler.flush()

    lines = (tmp_path / "ingest_audit.log").read_text(encoding="utf-8").splitlines()
    entry = json.loads(lines[-1])
    assert entry["event"] == "ingest"
    assert entry["chunk_count"] == 2
    assert audit_logger.propagate is False


def test_log_context_is_stamped_on_records() -> None:
    context_filter = LogContextFilter()

    with log_context(course_id="bio101", session_id=None):
        with log_context(document_id="lec1"):
            record = _record({"step": "ingest.document.start", "course_id": "chem200"})
            context_filter.filter(record)
        assert current_log_context() == {"course_id": "bio101"}

    output = json.loads(MinimalJSONFormatter().format(record))
    assert output["document_id"] == "lec1"
    assert output["course_id"] == "chem200"
    assert "session_id" not in output
    assert current_log_context() == {}


def test_log_context_rejects_unknown_fields() -> None:
    with pytest.raises(ValueError):
        with log_context(user_id="u1"):
            pass
