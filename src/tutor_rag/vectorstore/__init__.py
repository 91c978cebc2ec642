"""Vector store port and its backends."""

from __future__ import annotations

from tutor_rag.config import Settings
from tutor_rag.repositories import DocumentRepository

from .base import DEFAULT_SIMILARITY_THRESHOLD, Neighbour, VectorStore, chunk_id_for
from .errors import VectorStoreError
from .memory_store import InMemoryVectorStore


def build_vector_store(settings: Settings, repository: DocumentRepository) -> VectorStore:
    """Return the backend selected by ``VECTOR_STORE`` (``memory`` or ``chroma``)."""

    backend = settings.vector_store
    if backend in {"memory", "mock"}:
        return InMemoryVectorStore(repository, overfetch=settings.vector_query_overfetch)
    if backend == "chroma":
        from .chroma_store import ChromaVectorStore

        return ChromaVectorStore(
            repository,
            persist_dir=settings.chroma_persist_dir,
            collection_name=settings.chroma_collection,
            overfetch=settings.vector_query_overfetch,
        )
    raise ValueError(f"Unsupported VECTOR_STORE backend: {backend!r}")


__all__ = [
    "DEFAULT_SIMILARITY_THRESHOLD",
    "InMemoryVectorStore",
    "Neighbour",
    "VectorStore",
    "VectorStoreError",
    "build_vector_store",
    "chunk_id_for",
]
