"""Document ingestion: fetch, extract, chunk, embed and store."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional

from tutor_rag.embeddings import CachedEmbedder
from tutor_rag.errors import EmbeddingServiceError, ExtractionError
from tutor_rag.logging_config import AUDIT_LOGGER_NAME, log_context
from tutor_rag.models import Document, ProcessingResult
from tutor_rag.repositories import ByteSource, DocumentRepository
from tutor_rag.telemetry import emit_exception, emit_ingest_event, traced_duration
from tutor_rag.vectorstore import VectorStore, VectorStoreError

from .chunking import TextChunker
from .extractors import TextExtractionService

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)


class DocumentProcessingError(RuntimeError):
    """Internal signal that a document must be marked failed."""


class IngestionPipeline:
    """Sequential per-chunk ingestion with a small delay between embedding calls.

    Reprocessing a document first deletes all of its chunks, so running the
    pipeline twice yields the same chunk set. Chunk ordinals are assigned
    only to chunks that were stored, which keeps them contiguous even when
    a single chunk fails to embed or store.
    """

    def __init__(
        self,
        *,
        repository: DocumentRepository,
        byte_source: ByteSource,
        embedder: CachedEmbedder,
        vector_store: VectorStore,
        extractor: Optional[TextExtractionService] = None,
        chunker: Optional[TextChunker] = None,
        delay_seconds: float = 0.1,
    ) -> None:
        self.repository = repository
        self.byte_source = byte_source
        self.embedder = embedder
        self.vector_store = vector_store
        self.extractor = extractor or TextExtractionService()
        self.chunker = chunker or TextChunker()
        self.delay_seconds = delay_seconds

    async def process_document(self, document_id: str) -> ProcessingResult:
        """Process one document and record the outcome on it. Never raises on data errors."""

        document = self.repository.get_document(document_id)
        if document is None:
            return ProcessingResult(document_id=document_id, success=False, error="Document not found")

        with log_context(course_id=document.course_id, document_id=document.id):
            return await self._run(document)

    async def _run(self, document: Document) -> ProcessingResult:
        started = time.perf_counter()
        emit_ingest_event("ingest.document.start", document_id=document.id, course_id=document.course_id)
        try:
            result = await self._process(document)
        except DocumentProcessingError as error:
            return self._fail(document, str(error), started)
        except Exception as error:  # one broken document must not stop the others
            emit_exception(module=__name__, error=error, context={"document_id": document.id})
            return self._fail(document, f"Unexpected error: {error}", started)

        self.repository.mark_processed(document.id)
        emit_ingest_event(
            "ingest.document.complete",
            document_id=document.id,
            course_id=document.course_id,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            chunks=result.chunks_created,
            failed_chunks=result.chunks_failed,
        )
        AUDIT_LOGGER.info(
            {
                "event": "ingest",
                "course_id": document.course_id,
                "document_id": document.id,
                "title": document.title,
                "chunk_count": result.chunks_created,
                "failed_chunks": result.chunks_failed,
            }
        )
        return result

    async def process_course_documents(self, course_id: str) -> List[ProcessingResult]:
        """Process every not-yet-processed document of a course, one at a time."""

        documents = self.repository.find_unprocessed(course_id)
        LOGGER.info("Processing %s documents for course %s", len(documents), course_id)
        results: List[ProcessingResult] = []
        with log_context(course_id=course_id), traced_duration(
            "ingest.course", logger=LOGGER, course_id=course_id, documents=len(documents)
        ):
            for document in documents:
                results.append(await self.process_document(document.id))
        succeeded = sum(1 for result in results if result.success)
        LOGGER.info("Course %s: %s of %s documents processed", course_id, succeeded, len(results))
        return results

    async def _process(self, document: Document) -> ProcessingResult:
        if not document.source_url:
            raise DocumentProcessingError("Document has no source locator")

        try:
            data, content_type = await self.byte_source.fetch_bytes(document.source_url)
        except Exception as error:  # transport errors differ per byte source
            raise DocumentProcessingError(f"Failed to fetch document: {error}") from error

        try:
            extraction = await asyncio.to_thread(
                self.extractor.extract,
                data,
                content_type or document.content_type,
                document.source_url,
            )
        except ExtractionError as error:
            raise DocumentProcessingError(f"Extraction failed ({error.reason}): {error}") from error

        self.repository.update_extraction_metadata(
            document.id,
            document_format=extraction.format,
            file_size=len(data),
            page_count=extraction.page_count,
        )

        drafts = self.chunker.chunk(extraction.text)
        if not drafts:
            raise DocumentProcessingError("Extraction produced no chunkable text")

        try:
            removed = self.vector_store.delete_document_chunks(document.id)
        except VectorStoreError as error:
            raise DocumentProcessingError(f"Failed to clear previous chunks: {error}") from error
        if removed:
            LOGGER.info("Removed %s previous chunks of document %s", removed, document.id)

        created = 0
        failed = 0
        for draft in drafts:
            if draft.index and self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)
            try:
                vector = await self.embedder.embed(draft.content)
                self.vector_store.upsert_chunk(
                    document.id,
                    created,
                    draft.content,
                    draft.token_count,
                    vector,
                )
            except EmbeddingServiceError as error:
                if not error.transient:
                    raise DocumentProcessingError(f"Embedding service rejected chunk {draft.index}: {error}") from error
                LOGGER.warning("Skipping chunk %s of document %s: %s", draft.index, document.id, error)
                failed += 1
                continue
            except VectorStoreError as error:
                LOGGER.warning("Failed to store chunk %s of document %s: %s", draft.index, document.id, error)
                failed += 1
                continue
            created += 1

        if created == 0:
            raise DocumentProcessingError(f"None of the {len(drafts)} chunks could be embedded and stored")

        return ProcessingResult(
            document_id=document.id,
            success=True,
            chunks_created=created,
            chunks_failed=failed,
        )

    def _fail(self, document: Document, message: str, started: float) -> ProcessingResult:
        try:
            self.vector_store.delete_document_chunks(document.id)
        except VectorStoreError as error:
            LOGGER.warning("Could not clean up chunks of failed document %s: %s", document.id, error)
        self.repository.mark_failed(document.id, message)
        emit_ingest_event(
            "ingest.document.failed",
            document_id=document.id,
            course_id=document.course_id,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            error=message,
        )
        return ProcessingResult(document_id=document.id, success=False, error=message)


__all__ = ["IngestionPipeline"]
