"""Storage port for chunk vectors and the shared similarity-query logic."""
from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from tutor_rag.models import Chunk, Course, Document, SimilarityResult
from tutor_rag.repositories import DocumentRepository
from tutor_rag.telemetry import emit_vectorstore_event

LOGGER = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.05
DEFAULT_OVERFETCH = 3


def chunk_id_for(document_id: str, index: int) -> str:
    """Stable chunk id so re-inserting a position overwrites it."""

    return uuid.uuid5(uuid.NAMESPACE_URL, f"{document_id}:{index}").hex


@dataclass(slots=True)
class Neighbour:
    """A raw nearest-neighbour hit returned by a backend."""

    chunk_id: str
    document_id: str
    chunk_index: int
    content: str
    token_count: int
    distance: float
    page_number: Optional[int] = None


class VectorStore(ABC):
    """Persist chunk vectors and answer course-scoped cosine-similarity queries.

    Backends implement the write primitives and :meth:`_nearest`; the
    course/processed scoping, threshold filter, ordering and join with
    document and course labels live here so every backend behaves the same.
    """

    backend_name = "abstract"

    def __init__(self, repository: DocumentRepository, *, overfetch: int = DEFAULT_OVERFETCH) -> None:
        self.repository = repository
        self.overfetch = max(1, overfetch)

    @abstractmethod
    def upsert_chunk(
        self,
        document_id: str,
        index: int,
        content: str,
        token_count: int,
        vector: Sequence[float],
        *,
        page_number: Optional[int] = None,
    ) -> Chunk:
        """Insert or replace the chunk at ``index`` of ``document_id``."""

    @abstractmethod
    def delete_document_chunks(self, document_id: str) -> int:
        """Remove every chunk of ``document_id`` and return how many were removed."""

    @abstractmethod
    def count_document_chunks(self, document_id: str) -> int: ...

    @abstractmethod
    def _nearest(self, vector: Sequence[float], document_ids: Sequence[str], k: int) -> List[Neighbour]:
        """Return up to ``k`` hits among ``document_ids`` ordered by ascending cosine distance."""

    def query(
        self,
        course_id: str,
        vector: Sequence[float],
        limit: int = 5,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> List[SimilarityResult]:
        """Return chunks of processed course documents with similarity above the threshold.

        Never raises: any failure is logged and yields an empty list so a
        broken index only removes grounding from the answer.
        """

        if limit <= 0:
            return []
        try:
            document_ids = self.repository.processed_document_ids(course_id)
            if not document_ids:
                return []
            neighbours = self._nearest(vector, document_ids, limit * self.overfetch)
            results = self._to_results(course_id, neighbours, similarity_threshold)
        except Exception as error:
            emit_vectorstore_event(
                "vectorstore.query",
                backend=self.backend_name,
                count=0,
                course_id=course_id,
                error=error,
            )
            return []

        results.sort(key=lambda result: result.similarity, reverse=True)
        results = results[:limit]
        emit_vectorstore_event("vectorstore.query", backend=self.backend_name, count=len(results), course_id=course_id)
        return results

    def _to_results(
        self,
        course_id: str,
        neighbours: Sequence[Neighbour],
        similarity_threshold: float,
    ) -> List[SimilarityResult]:
        course: Optional[Course] = self.repository.get_course(course_id)
        documents: Dict[str, Optional[Document]] = {}
        results: List[SimilarityResult] = []
        for neighbour in neighbours:
            similarity = 1.0 - float(neighbour.distance)
            if similarity <= similarity_threshold:
                continue
            if neighbour.document_id not in documents:
                documents[neighbour.document_id] = self.repository.get_document(neighbour.document_id)
            document = documents[neighbour.document_id]
            if document is None:
                LOGGER.warning("Chunk %s references unknown document %s", neighbour.chunk_id, neighbour.document_id)
                continue
            results.append(
                SimilarityResult(
                    chunk_id=neighbour.chunk_id,
                    document_id=neighbour.document_id,
                    content=neighbour.content,
                    token_count=neighbour.token_count,
                    chunk_index=neighbour.chunk_index,
                    similarity=similarity,
                    document_title=document.title,
                    document_url=document.source_url,
                    course_name=course.name if course else None,
                    course_code=course.code if course else None,
                    page_number=neighbour.page_number,
                )
            )
        return results


__all__ = ["DEFAULT_SIMILARITY_THRESHOLD", "Neighbour", "VectorStore", "chunk_id_for"]
