from __future__ import annotations

import dataclasses
import json
from datetime import datetime, timedelta, timezone

import pytest

from conftest import add_processed_document, run
from tutor_rag.embeddings import DeterministicEmbeddingClient
from tutor_rag.errors import ChatServiceError, FailureKind
from tutor_rag.llm import StubChatClient
from tutor_rag.models import PromptVariant, StoredMessage
from tutor_rag.orchestrator import RAGOrchestrator
from tutor_rag.prompt_builder import TRUNCATION_NOTICE
from tutor_rag.references import ExternalReferenceGenerator

REFERENCES_REPLY = json.dumps(
    {"books": [{"title": "Campbell Biology", "authors": "Urry", "year": "2020"}], "journals": [], "websites": []}
)


def make_orchestrator(settings, repository, message_store, vector_store, embedder, chat=None, **overrides):
    settings = dataclasses.replace(settings, **overrides)
    chat = chat or StubChatClient()
    return RAGOrchestrator(
        settings=settings,
        repository=repository,
        message_store=message_store,
        vector_store=vector_store,
        embedder=embedder,
        chat_client=chat,
        reference_generator=ExternalReferenceGenerator(chat),
    )


def seed_chunks(repository, vector_store, embedder, document_id: str, title: str, texts) -> None:
    add_processed_document(repository, document_id, title)
    for index, text in enumerate(texts):
        vector_store.upsert_chunk(document_id, index, text, len(text) // 4, run(embedder.embed(text)))


@pytest.fixture
def orchestrator(settings, repository, message_store, vector_store, embedder):
    return make_orchestrator(settings, repository, message_store, vector_store, embedder)


def test_grounded_prompt_uses_retrieved_material(repository, vector_store, embedder, orchestrator) -> None:
    seed_chunks(
        repository,
        vector_store,
        embedder,
        "photo",
        "Photosynthesis lecture",
        ["Plants use light and chlorophyll for photosynthesis.", "Light energy becomes chemical energy."],
    )
    seed_chunks(repository, vector_store, embedder, "calc", "Calculus notes", ["A derivative is a limit."])

    prompt = run(orchestrator.build_grounded_prompt("How do plants use light energy?", "bio101"))

    assert prompt.variant is PromptVariant.GROUNDED
    assert "## Document: Photosynthesis lecture" in prompt.system_prompt
    assert '"Introduction to Biology" (BIO101)' in prompt.system_prompt
    assert "Calculus notes" not in prompt.system_prompt
    assert {document.title for document in prompt.referenced_documents} == {"Photosynthesis lecture"}
    similarities = [document.similarity for document in prompt.referenced_documents]
    assert similarities == sorted(similarities, reverse=True)
    assert not prompt.truncated
    assert prompt.messages()[-1] == {"role": "user", "content": "How do plants use light energy?"}


def test_no_material_variant_when_nothing_matches(orchestrator) -> None:
    prompt = run(orchestrator.build_grounded_prompt("What is an integral?", "bio101"))

    assert prompt.variant is PromptVariant.NO_MATERIAL
    assert prompt.referenced_documents == []
    assert "no course material on this topic was found" in prompt.system_prompt


def test_supplemental_variant_when_only_student_document(orchestrator) -> None:
    prompt = run(
        orchestrator.build_grounded_prompt("Explain my notes", "bio101", supplemental="Main topics: enzymes.")
    )

    assert prompt.variant is PromptVariant.SUPPLEMENTAL
    assert "Main topics: enzymes." in prompt.system_prompt


def test_history_is_loaded_only_for_sessions(message_store, orchestrator) -> None:
    start = datetime(2024, 3, 1, tzinfo=timezone.utc)
    message_store.append("s1", StoredMessage("What is a cell?", True, start))
    message_store.append("s1", StoredMessage("The unit of life.", False, start + timedelta(seconds=5)))

    with_session = run(orchestrator.build_grounded_prompt("And mitochondria?", "bio101", "s1"))
    without_session = run(orchestrator.build_grounded_prompt("And mitochondria?", "bio101"))

    assert [turn.role for turn in with_session.history] == ["user", "assistant"]
    assert [message["role"] for message in with_session.messages()] == ["system", "user", "assistant", "user"]
    assert without_session.history == []


def test_failed_retrieval_only_drops_grounding(message_store, orchestrator) -> None:
    class BrokenRetriever:
        async def retrieve(self, query, course_id):
            raise RuntimeError("index offline")

    message_store.append("s1", StoredMessage("Earlier question", True))
    orchestrator.retriever = BrokenRetriever()

    prompt = run(orchestrator.build_grounded_prompt("Anything?", "bio101", "s1"))

    assert prompt.variant is PromptVariant.NO_MATERIAL
    assert [turn.content for turn in prompt.history] == ["Earlier question"]


def test_references_added_when_enabled(settings, repository, message_store, vector_store, embedder) -> None:
    chat = StubChatClient(responses=[REFERENCES_REPLY])
    orchestrator = make_orchestrator(
        settings, repository, message_store, vector_store, embedder, chat, external_references_enabled=True
    )

    prompt = run(orchestrator.build_grounded_prompt("What is a cell?", "bio101"))
    skipped = run(orchestrator.build_grounded_prompt("What is a cell?", "bio101", include_references=False))

    assert prompt.external_references.books[0].title == "Campbell Biology"
    assert "# Further reading" in prompt.system_prompt
    assert skipped.external_references is None
    assert len(chat.calls) == 1


def test_references_disabled_by_settings(orchestrator) -> None:
    prompt = run(orchestrator.build_grounded_prompt("What is a cell?", "bio101"))

    assert prompt.external_references is None
    assert orchestrator.chat_client.calls == []


def test_oversized_prompt_is_truncated(settings, repository, message_store, vector_store, embedder) -> None:
    long_chunk = ("Plants capture light energy with chlorophyll. " * 100).strip()
    seed_chunks(repository, vector_store, embedder, "photo", "Photosynthesis", [long_chunk, long_chunk + " Again."])
    orchestrator = make_orchestrator(
        settings, repository, message_store, vector_store, embedder, max_prompt_tokens=1000
    )

    prompt = run(orchestrator.build_grounded_prompt("How do plants use light?", "bio101"))

    assert prompt.variant is PromptVariant.GROUNDED
    assert prompt.truncated
    assert prompt.system_prompt.endswith(TRUNCATION_NOTICE)
    assert len(prompt.system_prompt) <= 8000 + len(TRUNCATION_NOTICE) + 2


def test_answer_returns_top_three_documents(settings, repository, message_store, vector_store, embedder) -> None:
    for number in range(5):
        seed_chunks(
            repository,
            vector_store,
            embedder,
            f"doc{number}",
            f"Lecture {number}",
            ["Photosynthesis needs light. " + "plants " * number],
        )
    chat = StubChatClient(responses=["Plants turn light into sugar."])
    orchestrator = make_orchestrator(settings, repository, message_store, vector_store, embedder, chat)

    answer = run(orchestrator.answer("Explain photosynthesis and light", "bio101"))

    assert answer.content == "Plants turn light into sugar."
    assert answer.model == "stub"
    assert answer.variant is PromptVariant.GROUNDED
    assert len(answer.referenced_documents) == 3
    assert chat.calls[0][0]["role"] == "system"
    assert chat.calls[0][-1]["content"] == "Explain photosynthesis and light"


def test_answer_propagates_chat_failures(settings, repository, message_store, vector_store, embedder) -> None:
    class DownChat(StubChatClient):
        async def complete(self, messages, *, max_tokens=1000, temperature=0.7):
            raise ChatServiceError("unauthorised", kind=FailureKind.PERMANENT, status_code=401)

    orchestrator = make_orchestrator(settings, repository, message_store, vector_store, embedder, DownChat())

    with pytest.raises(ChatServiceError):
        run(orchestrator.answer("Anything?", "bio101"))


def test_cache_admin(orchestrator) -> None:
    run(orchestrator.build_grounded_prompt("cell energy", "bio101"))
    run(orchestrator.build_grounded_prompt("cell energy", "bio101"))

    stats = orchestrator.cache_stats()
    assert stats.size == 1
    assert stats.hit_count == 1

    orchestrator.clear_cache()
    assert orchestrator.cache_stats().size == 0


def test_from_settings_wires_components(settings, repository, message_store) -> None:
    orchestrator = RAGOrchestrator.from_settings(settings, repository=repository, message_store=message_store)

    assert isinstance(orchestrator.embedder.client, DeterministicEmbeddingClient)
    assert isinstance(orchestrator.chat_client, StubChatClient)
    assert orchestrator.cache.max_size == settings.embedding_cache_size
    orchestrator.start()
    try:
        assert orchestrator.cache.running
    finally:
        orchestrator.stop()
    assert not orchestrator.cache.running
