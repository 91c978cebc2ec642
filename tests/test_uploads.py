from __future__ import annotations

import pytest

from conftest import run
from tutor_rag.errors import ChatServiceError, ExtractionError, FailureKind
from tutor_rag.llm import StubChatClient
from tutor_rag.uploads import UploadedDocumentAnalyzer


class FlakyChat(StubChatClient):
    """Fails the second call and answers the rest with numbered replies."""

    async def complete(self, messages, *, max_tokens=1000, temperature=0.7):
        if len(self.calls) == 1:
            self.calls.append(list(messages))
            raise ChatServiceError("overloaded", kind=FailureKind.TRANSIENT, status_code=503)
        return await super().complete(messages, max_tokens=max_tokens, temperature=temperature)


def test_short_document_is_analysed_in_one_call() -> None:
    chat = StubChatClient(responses=["  Topics: enzymes.  "])
    analyzer = UploadedDocumentAnalyzer(chat, delay_seconds=0)

    context = run(analyzer.analyze(b"Enzymes speed up reactions.", "text/plain", "Introduction to Biology"))

    assert context.analysis == "Topics: enzymes."
    assert len(chat.calls) == 1
    system, user = chat.calls[0]
    assert '"Introduction to Biology"' in system["content"]
    assert user["content"] == "Enzymes speed up reactions."
    assert context.metadata["chunks_analysed"] == 1
    assert context.metadata["format"] == "txt"
    assert context.usage.total_tokens > 0


def test_long_document_analyses_first_three_parts_then_summarises() -> None:
    text = ("Enzymes lower activation energy. " * 600).encode("utf-8")
    chat = StubChatClient(responses=["part one", "part two", "part three", "combined"])
    analyzer = UploadedDocumentAnalyzer(chat, delay_seconds=0)

    context = run(analyzer.analyze(text, file_name="notes.txt"))

    assert len(chat.calls) == 4
    assert context.analysis == "combined"
    summary_input = chat.calls[3][1]["content"]
    assert summary_input.startswith("Part 1:\npart one")
    assert "Part 3:\npart three" in summary_input
    assert context.metadata["chunks_analysed"] == 3
    assert context.metadata["chunks_total"] > 3


def test_failed_part_gets_placeholder() -> None:
    text = ("Mitochondria make ATP. " * 800).encode("utf-8")
    chat = FlakyChat()
    analyzer = UploadedDocumentAnalyzer(chat, delay_seconds=0)

    context = run(analyzer.analyze(text, "text/plain"))

    summary_input = chat.calls[-1][1]["content"]
    assert "[Part 2 could not be analysed]" in summary_input
    assert context.metadata["chunks_analysed"] == 3


def test_unsupported_upload_raises_extraction_error() -> None:
    analyzer = UploadedDocumentAnalyzer(StubChatClient())

    with pytest.raises(ExtractionError) as excinfo:
        run(analyzer.analyze(b"\x89PNG....", "image/png", file_name="diagram.png"))

    assert excinfo.value.reason == "unsupported"
