"""In-memory vector store using exact cosine similarity."""
from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Sequence

import numpy as np

from tutor_rag.models import Chunk
from tutor_rag.repositories import DocumentRepository
from tutor_rag.telemetry import emit_vectorstore_event

from .base import DEFAULT_OVERFETCH, Neighbour, VectorStore, chunk_id_for
from .errors import VectorStoreError

LOGGER = logging.getLogger(__name__)


class InMemoryVectorStore(VectorStore):
    """Keeps chunks in a dict; suitable for tests and single-process runs."""

    backend_name = "memory"

    def __init__(self, repository: DocumentRepository, *, overfetch: int = DEFAULT_OVERFETCH) -> None:
        super().__init__(repository, overfetch=overfetch)
        self._chunks: Dict[str, Chunk] = {}
        self._lock = threading.Lock()

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
        values = [float(value) for value in vector]
        if not values:
            raise VectorStoreError(f"Empty vector for chunk {index} of document {document_id}")
        chunk = Chunk(
            id=chunk_id_for(document_id, index),
            document_id=document_id,
            index=index,
            content=content,
            token_count=token_count,
            vector=values,
            page_number=page_number,
        )
        with self._lock:
            self._chunks[chunk.id] = chunk
        return chunk

    def delete_document_chunks(self, document_id: str) -> int:
        with self._lock:
            doomed = [chunk_id for chunk_id, chunk in self._chunks.items() if chunk.document_id == document_id]
            for chunk_id in doomed:
                del self._chunks[chunk_id]
        emit_vectorstore_event(
            "vectorstore.delete",
            backend=self.backend_name,
            count=len(doomed),
            document_id=document_id,
        )
        return len(doomed)

    def count_document_chunks(self, document_id: str) -> int:
        with self._lock:
            return sum(1 for chunk in self._chunks.values() if chunk.document_id == document_id)

    def document_chunks(self, document_id: str) -> List[Chunk]:
        """Return the chunks of a document ordered by index."""

        with self._lock:
            chunks = [chunk for chunk in self._chunks.values() if chunk.document_id == document_id]
        return sorted(chunks, key=lambda chunk: chunk.index)

    def _nearest(self, vector: Sequence[float], document_ids: Sequence[str], k: int) -> List[Neighbour]:
        wanted = set(document_ids)
        with self._lock:
            candidates = [
                chunk
                for chunk in self._chunks.values()
                if chunk.document_id in wanted and chunk.vector is not None
            ]
        if not candidates or k <= 0:
            return []

        query = np.asarray(vector, dtype=np.float64)
        matrix = np.asarray([chunk.vector for chunk in candidates], dtype=np.float64)
        if matrix.shape[1] != query.shape[0]:
            raise VectorStoreError(
                f"Query dimension {query.shape[0]} does not match stored dimension {matrix.shape[1]}"
            )
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            similarities = np.where(norms > 0, matrix @ query / norms, 0.0)
        distances = 1.0 - similarities

        order = np.argsort(distances, kind="stable")[:k]
        return [
            Neighbour(
                chunk_id=candidates[position].id,
                document_id=candidates[position].document_id,
                chunk_index=candidates[position].index,
                content=candidates[position].content,
                token_count=candidates[position].token_count,
                distance=float(distances[position]),
                page_number=candidates[position].page_number,
            )
            for position in order
        ]


__all__ = ["InMemoryVectorStore"]
