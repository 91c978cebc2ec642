"""Chroma-backed vector store (HNSW index with cosine distance)."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import chromadb

from tutor_rag.models import Chunk
from tutor_rag.repositories import DocumentRepository
from tutor_rag.telemetry import emit_vectorstore_event

from .base import DEFAULT_OVERFETCH, Neighbour, VectorStore, chunk_id_for
from .errors import VectorStoreError

LOGGER = logging.getLogger(__name__)

DEFAULT_COLLECTION_NAME = "course_chunks"
DEFAULT_DISTANCE_METRIC = "cosine"


class ChromaVectorStore(VectorStore):
    """Persist chunk vectors in a Chroma collection.

    Chroma's HNSW index is approximate, which is why the base class
    over-fetches before applying the similarity threshold.
    """

    backend_name = "chroma"

    def __init__(
        self,
        repository: DocumentRepository,
        *,
        persist_dir: str | Path | None = None,
        collection_name: str = DEFAULT_COLLECTION_NAME,
        client: Optional[Any] = None,
        overfetch: int = DEFAULT_OVERFETCH,
    ) -> None:
        super().__init__(repository, overfetch=overfetch)
        self.collection_name = collection_name
        try:
            if client is None:
                path = Path(persist_dir or "chroma_db").resolve()
                path.mkdir(parents=True, exist_ok=True)
                client = chromadb.PersistentClient(path=str(path))
            self._client = client
            self._collection = client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": DEFAULT_DISTANCE_METRIC},
            )
        except Exception as exc:
            raise VectorStoreError("Failed to initialise Chroma collection", cause=exc) from exc

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
        metadata: Dict[str, Any] = {
            "document_id": document_id,
            "chunk_index": index,
            "token_count": token_count,
            "created_at": chunk.created_at.isoformat(),
        }
        if page_number is not None:
            metadata["page_number"] = page_number
        try:
            self._collection.upsert(
                ids=[chunk.id],
                embeddings=[values],
                documents=[content],
                metadatas=[metadata],
            )
        except Exception as exc:
            raise VectorStoreError(f"Failed to upsert chunk {index} of document {document_id}", cause=exc) from exc
        return chunk

    def delete_document_chunks(self, document_id: str) -> int:
        try:
            existing = self._collection.get(where={"document_id": document_id}, include=["metadatas"])
            ids = list(existing.get("ids") or [])
            if ids:
                self._collection.delete(ids=ids)
        except Exception as exc:
            raise VectorStoreError(f"Failed to delete chunks of document {document_id}", cause=exc) from exc
        emit_vectorstore_event(
            "vectorstore.delete",
            backend=self.backend_name,
            count=len(ids),
            document_id=document_id,
        )
        return len(ids)

    def count_document_chunks(self, document_id: str) -> int:
        existing = self._collection.get(where={"document_id": document_id}, include=["metadatas"])
        return len(existing.get("ids") or [])

    def _nearest(self, vector: Sequence[float], document_ids: Sequence[str], k: int) -> List[Neighbour]:
        available = self._collection.count()
        if available == 0 or k <= 0:
            return []
        result = self._collection.query(
            query_embeddings=[[float(value) for value in vector]],
            n_results=min(k, available),
            where={"document_id": {"$in": list(document_ids)}},
            include=["documents", "metadatas", "distances"],
        )

        ids = (result.get("ids") or [[]])[0]
        documents = (result.get("documents") or [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]

        neighbours: List[Neighbour] = []
        for chunk_id, content, metadata, distance in zip(ids, documents, metadatas, distances):
            metadata = metadata or {}
            page_number = metadata.get("page_number")
            neighbours.append(
                Neighbour(
                    chunk_id=chunk_id,
                    document_id=str(metadata.get("document_id", "")),
                    chunk_index=int(metadata.get("chunk_index", 0)),
                    content=content or "",
                    token_count=int(metadata.get("token_count", 0)),
                    distance=float(distance) if distance is not None else 1.0,
                    page_number=int(page_number) if page_number is not None else None,
                )
            )
        return neighbours


__all__ = ["ChromaVectorStore", "DEFAULT_COLLECTION_NAME"]
