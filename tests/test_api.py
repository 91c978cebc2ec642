from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import KeywordEmbeddingClient
from tutor_rag.errors import ChatServiceError, FailureKind
from tutor_rag.llm import StubChatClient
from tutor_rag.main import app
from tutor_rag.models import Document
from tutor_rag.service import build_service, get_tutor_service

LECTURE = (
    "Photosynthesis is how plants capture light. Chlorophyll absorbs light energy. "
    "The energy is stored as sugar for the plants."
)


class FailingChat(StubChatClient):
    def __init__(self, kind: FailureKind) -> None:
        super().__init__()
        self.kind = kind

    async def complete(self, messages, *, max_tokens=1000, temperature=0.7):
        raise ChatServiceError("model unavailable", kind=self.kind)


def make_service(settings, repository, message_store, byte_source, chat=None):
    return build_service(
        settings,
        repository=repository,
        message_store=message_store,
        byte_source=byte_source,
        embedding_client=KeywordEmbeddingClient(),
        chat_client=chat or StubChatClient(responses=["Plants use light to make sugar."]),
    )


@pytest.fixture
def service(settings, repository, message_store, byte_source):
    repository.add_document(
        Document(
            id="lec1",
            course_id="bio101",
            title="Photosynthesis lecture",
            source_url="https://files.example.edu/lec1.txt",
        )
    )
    byte_source.add("https://files.example.edu/lec1.txt", LECTURE.encode("utf-8"), "text/plain")
    return make_service(settings, repository, message_store, byte_source)


@pytest.fixture
def client(service):
    app.dependency_overrides[get_tutor_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_healthz_returns_ok(client) -> None:
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.text == "ok"


def test_lifespan_starts_cache_sweeper(service, client) -> None:
    assert service.orchestrator.cache.running


def test_process_course_then_chat(client) -> None:
    processed = client.post("/courses/bio101/process")
    assert processed.status_code == 200
    body = processed.json()
    assert body["processed"] == 1
    assert body["failed"] == 0
    assert body["results"][0]["document_id"] == "lec1"
    assert body["results"][0]["chunks_created"] == 1

    response = client.post("/courses/bio101/chat", json={"question": "How do plants use light?"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["answer"] == "Plants use light to make sugar."
    assert payload["variant"] == "grounded"
    assert payload["model"] == "stub"
    assert payload["referenced_documents"][0]["title"] == "Photosynthesis lecture"
    assert payload["usage"]["total_tokens"] > 0
    assert payload["external_references"] is None


def test_prompt_preview_without_material(client) -> None:
    response = client.post(
        "/courses/bio101/prompt",
        json={"question": "What is a derivative?", "supplemental_context": "Notes about limits."},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["variant"] == "supplemental"
    assert "Notes about limits." in payload["system_prompt"]
    assert payload["history_turns"] == 0
    assert payload["referenced_documents"] == []


def test_process_single_document(client) -> None:
    response = client.post("/documents/lec1/process")

    assert response.status_code == 200
    assert response.json()["success"] is True


def test_unknown_course_and_document_return_404(client) -> None:
    assert client.post("/courses/chem100/process").status_code == 404
    assert client.post("/courses/chem100/chat", json={"question": "Hi"}).status_code == 404
    assert client.post("/documents/missing/process").status_code == 404


def test_empty_question_is_rejected(client) -> None:
    assert client.post("/courses/bio101/chat", json={"question": ""}).status_code == 422


@pytest.mark.parametrize(("kind", "status"), [(FailureKind.TRANSIENT, 503), (FailureKind.PERMANENT, 502)])
def test_chat_failures_map_to_gateway_errors(settings, repository, message_store, byte_source, kind, status) -> None:
    service = make_service(settings, repository, message_store, byte_source, chat=FailingChat(kind))
    app.dependency_overrides[get_tutor_service] = lambda: service
    try:
        with TestClient(app) as test_client:
            response = test_client.post("/courses/bio101/chat", json={"question": "Anything?"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == status


def test_cache_stats_and_clear(client) -> None:
    client.post("/courses/bio101/prompt", json={"question": "cell energy"})
    client.post("/courses/bio101/prompt", json={"question": "cell energy"})

    stats = client.get("/cache/stats").json()
    assert stats["size"] == 1
    assert stats["hit_count"] == 1
    assert stats["hit_rate"] == 50

    assert client.delete("/cache").json() == {"status": "cleared"}
    assert client.get("/cache/stats").json()["size"] == 0
