"""Query-time chunk retrieval: embed the question, then ask the vector store."""
from __future__ import annotations

import logging
import time
from typing import List

from .embeddings import CachedEmbedder
from .errors import EmbeddingServiceError
from .models import SimilarityResult
from .telemetry import emit_retriever_event
from .vectorstore import DEFAULT_SIMILARITY_THRESHOLD, VectorStore

LOGGER = logging.getLogger(__name__)


class ChunkRetriever:
    def __init__(
        self,
        embedder: CachedEmbedder,
        vector_store: VectorStore,
        *,
        limit: int = 5,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> None:
        self.embedder = embedder
        self.vector_store = vector_store
        self.limit = limit
        self.similarity_threshold = similarity_threshold

    async def retrieve(self, query: str, course_id: str) -> List[SimilarityResult]:
        """Return ranked chunks for ``query``; an embedding failure yields ``[]``."""

        if not query.strip():
            return []
        started = time.perf_counter()
        try:
            vector = await self.embedder.embed(query)
        except EmbeddingServiceError as error:
            LOGGER.warning("Query embedding failed for course %s: %s", course_id, error)
            return []

        results = self.vector_store.query(course_id, vector, self.limit, self.similarity_threshold)
        emit_retriever_event(
            query=query,
            course_id=course_id,
            limit=self.limit,
            threshold=self.similarity_threshold,
            similarities=[result.similarity for result in results],
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return results


__all__ = ["ChunkRetriever"]
