"""Wiring of the orchestrator, ingestion pipeline and upload analyzer."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from .config import Settings, get_settings
from .embeddings import EmbeddingClient
from .ingest.chunking import TextChunker
from .ingest.extractors import TextExtractionService
from .ingest.pipeline import IngestionPipeline
from .llm import ChatCompletionClient
from .orchestrator import RAGOrchestrator
from .repositories import (
    ByteSource,
    DocumentRepository,
    HttpByteSource,
    InMemoryDocumentRepository,
    InMemoryMessageStore,
    MessageStore,
)
from .uploads import UploadedDocumentAnalyzer
from .vectorstore import VectorStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TutorService:
    settings: Settings
    repository: DocumentRepository
    message_store: MessageStore
    orchestrator: RAGOrchestrator
    pipeline: IngestionPipeline
    analyzer: UploadedDocumentAnalyzer

    def start(self) -> None:
        self.orchestrator.start()

    def stop(self) -> None:
        self.orchestrator.stop()


def build_service(
    settings: Optional[Settings] = None,
    *,
    repository: Optional[DocumentRepository] = None,
    message_store: Optional[MessageStore] = None,
    byte_source: Optional[ByteSource] = None,
    vector_store: Optional[VectorStore] = None,
    embedding_client: Optional[EmbeddingClient] = None,
    chat_client: Optional[ChatCompletionClient] = None,
) -> TutorService:
    """Build every component from settings; collaborators may be injected."""

    settings = settings or get_settings()
    # the chunker validates its configuration here, at startup
    chunker = TextChunker(settings.chunk_max_tokens, settings.chunk_overlap_tokens)
    repository = repository or InMemoryDocumentRepository()
    message_store = message_store or InMemoryMessageStore()
    extractor = TextExtractionService()

    orchestrator = RAGOrchestrator.from_settings(
        settings,
        repository=repository,
        message_store=message_store,
        vector_store=vector_store,
        embedding_client=embedding_client,
        chat_client=chat_client,
    )
    pipeline = IngestionPipeline(
        repository=repository,
        byte_source=byte_source or HttpByteSource(),
        embedder=orchestrator.embedder,
        vector_store=orchestrator.vector_store,
        extractor=extractor,
        chunker=chunker,
        delay_seconds=settings.ingest_delay_seconds,
    )
    analyzer = UploadedDocumentAnalyzer(
        orchestrator.chat_client,
        extractor=extractor,
        timeout=settings.chat_timeout_seconds,
        max_tokens=settings.chat_max_tokens,
        delay_seconds=settings.ingest_delay_seconds,
    )
    LOGGER.info(
        "Service built (vector store=%s, embeddings=%s, chat=%s)",
        settings.vector_store,
        orchestrator.embedder.client.model_name,
        orchestrator.chat_client.model_name,
    )
    return TutorService(
        settings=settings,
        repository=repository,
        message_store=message_store,
        orchestrator=orchestrator,
        pipeline=pipeline,
        analyzer=analyzer,
    )


@lru_cache()
def get_tutor_service() -> TutorService:
    """Return a lazily built process-wide service."""

    return build_service(get_settings())


def reset_tutor_service_cache() -> None:
    """Clear the cached service (primarily for testing)."""

    get_tutor_service.cache_clear()  # type: ignore[attr-defined]


__all__ = ["TutorService", "build_service", "get_tutor_service", "reset_tutor_service_cache"]
