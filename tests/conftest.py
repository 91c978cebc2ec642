"""Shared fixtures: in-memory collaborators and deterministic model clients."""
from __future__ import annotations

import asyncio
import re
from typing import Iterable, List, Sequence

import pytest

from tutor_rag.config import Settings
from tutor_rag.embedding_cache import EmbeddingCache
from tutor_rag.embeddings import CachedEmbedder, EmbeddingClient
from tutor_rag.errors import EmbeddingServiceError, FailureKind
from tutor_rag.models import Course, Document, DocumentStatus
from tutor_rag.repositories import InMemoryDocumentRepository, InMemoryMessageStore, StaticByteSource
from tutor_rag.vectorstore import InMemoryVectorStore

_TOKEN_RE = re.compile(r"[a-z]+")

VOCABULARY = (
    "photosynthesis",
    "chlorophyll",
    "light",
    "plants",
    "energy",
    "mitochondria",
    "respiration",
    "cell",
    "derivative",
    "integral",
    "calculus",
    "limit",
)


class KeywordEmbeddingClient(EmbeddingClient):
    """Bag-of-words vectors over a fixed vocabulary, so related texts score high."""

    def __init__(self, vocabulary: Sequence[str] = VOCABULARY) -> None:
        self.vocabulary = list(vocabulary)
        self.model_name = "keyword-test"
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        tokens = _TOKEN_RE.findall(text.lower())
        return [float(tokens.count(word)) for word in self.vocabulary]


class ScriptedEmbeddingClient(EmbeddingClient):
    """Raises the queued errors first, then returns a constant vector."""

    def __init__(self, errors: Iterable[BaseException] = (), vector: Sequence[float] = (1.0, 0.0)) -> None:
        self.model_name = "scripted-test"
        self._errors = list(errors)
        self.vector = list(vector)
        self.calls = 0

    async def embed(self, text: str) -> List[float]:
        self.calls += 1
        if self._errors:
            raise self._errors.pop(0)
        return list(self.vector)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def transient_error(message: str = "rate limited") -> EmbeddingServiceError:
    return EmbeddingServiceError(message, kind=FailureKind.TRANSIENT, status_code=429)


def permanent_error(message: str = "invalid api key") -> EmbeddingServiceError:
    return EmbeddingServiceError(message, kind=FailureKind.PERMANENT, status_code=401)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        embedding_backend="deterministic",
        chat_backend="stub",
        ingest_delay_seconds=0.0,
        external_references_enabled=False,
        vector_store="memory",
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def course() -> Course:
    return Course(id="bio101", name="Introduction to Biology", code="BIO101")


@pytest.fixture
def repository(course: Course) -> InMemoryDocumentRepository:
    return InMemoryDocumentRepository(courses=[course, Course(id="math201", name="Calculus", code="MATH201")])


@pytest.fixture
def message_store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


@pytest.fixture
def byte_source() -> StaticByteSource:
    return StaticByteSource()


@pytest.fixture
def keyword_client() -> KeywordEmbeddingClient:
    return KeywordEmbeddingClient()


@pytest.fixture
def embedder(keyword_client: KeywordEmbeddingClient) -> CachedEmbedder:
    return CachedEmbedder(keyword_client, EmbeddingCache(max_size=100, ttl_seconds=60.0))


@pytest.fixture
def vector_store(repository: InMemoryDocumentRepository) -> InMemoryVectorStore:
    return InMemoryVectorStore(repository)


def add_processed_document(
    repository: InMemoryDocumentRepository,
    document_id: str,
    title: str,
    course_id: str = "bio101",
    *,
    status: DocumentStatus = DocumentStatus.PROCESSED,
) -> Document:
    document = Document(
        id=document_id,
        course_id=course_id,
        title=title,
        source_url=f"https://files.example.edu/{document_id}.txt",
        status=status,
    )
    repository.add_document(document)
    return document


def run(coro):
    return asyncio.run(coro)
