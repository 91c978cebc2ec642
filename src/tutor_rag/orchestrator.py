"""Assemble grounded prompts and answers for student questions."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional

from .config import Settings
from .context_builder import ContextAssembler
from .embedding_cache import CacheStats, EmbeddingCache
from .embeddings import CachedEmbedder, EmbeddingClient, build_cached_embedder
from .history import ConversationHistoryTrimmer
from .ingest.chunking import estimate_tokens
from .llm import ChatCompletionClient, build_chat_client
from .logging_config import log_context
from .models import (
    ChatAnswer,
    ConversationTurn,
    Course,
    GroundedPrompt,
    PromptVariant,
    ReferencedDocument,
    SimilarityResult,
)
from .prompt_builder import (
    render_grounded_prompt,
    render_no_material_prompt,
    render_supplemental_prompt,
    truncate_system_prompt,
)
from .references import ExternalReferenceGenerator, ExternalReferences
from .repositories import DocumentRepository, MessageStore
from .retriever import ChunkRetriever
from .telemetry import emit_exception, emit_prompt_event
from .vectorstore import VectorStore, build_vector_store

LOGGER = logging.getLogger(__name__)

ANSWER_REFERENCE_LIMIT = 3


class RAGOrchestrator:
    """Fan out retrieval, history and reference generation, then build the prompt.

    Each concurrent task is isolated: a failure only removes that task's
    contribution. The orchestrator owns the embedding cache lifecycle via
    :meth:`start` and :meth:`stop`.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        repository: DocumentRepository,
        message_store: MessageStore,
        vector_store: VectorStore,
        embedder: CachedEmbedder,
        chat_client: ChatCompletionClient,
        reference_generator: Optional[ExternalReferenceGenerator] = None,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.vector_store = vector_store
        self.embedder = embedder
        self.chat_client = chat_client
        self.reference_generator = reference_generator
        self.retriever = ChunkRetriever(
            embedder,
            vector_store,
            limit=settings.max_chunks_per_query,
            similarity_threshold=settings.similarity_threshold,
        )
        self.history_trimmer = ConversationHistoryTrimmer(message_store, settings.history_token_budget)
        self.assembler = ContextAssembler(settings.context_token_budget)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        repository: DocumentRepository,
        message_store: MessageStore,
        vector_store: Optional[VectorStore] = None,
        embedding_client: Optional[EmbeddingClient] = None,
        chat_client: Optional[ChatCompletionClient] = None,
    ) -> "RAGOrchestrator":
        cache = EmbeddingCache(
            settings.embedding_cache_size,
            settings.embedding_cache_ttl_seconds,
            sweep_interval=settings.embedding_cache_sweep_interval_seconds,
        )
        chat = chat_client or build_chat_client(settings)
        return cls(
            settings=settings,
            repository=repository,
            message_store=message_store,
            vector_store=vector_store or build_vector_store(settings, repository),
            embedder=build_cached_embedder(settings, cache, embedding_client),
            chat_client=chat,
            reference_generator=ExternalReferenceGenerator(
                chat,
                validate_urls=settings.validate_external_urls,
                timeout=settings.chat_timeout_seconds,
            ),
        )

    @property
    def cache(self) -> EmbeddingCache:
        return self.embedder.cache

    def start(self) -> None:
        self.cache.start()

    def stop(self) -> None:
        self.cache.stop()

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    def _references_enabled(self, include_references: bool) -> bool:
        return (
            include_references
            and self.settings.external_references_enabled
            and self.reference_generator is not None
        )

    async def build_grounded_prompt(
        self,
        query: str,
        course_id: str,
        session_id: Optional[str] = None,
        *,
        supplemental: Optional[str] = None,
        include_references: bool = True,
    ) -> GroundedPrompt:
        with log_context(course_id=course_id, session_id=session_id):
            return await self._build_grounded_prompt(
                query,
                course_id,
                session_id,
                supplemental=supplemental,
                include_references=include_references,
            )

    async def _build_grounded_prompt(
        self,
        query: str,
        course_id: str,
        session_id: Optional[str],
        *,
        supplemental: Optional[str],
        include_references: bool,
    ) -> GroundedPrompt:
        course = self.repository.get_course(course_id)

        tasks: Dict[str, Awaitable[Any]] = {"retrieval": self.retriever.retrieve(query, course_id)}
        if session_id:
            tasks["history"] = asyncio.to_thread(self.history_trimmer.trim, session_id)
        if self._references_enabled(include_references):
            tasks["references"] = self.reference_generator.generate(query, course)  # type: ignore[union-attr]

        outcomes = await asyncio.gather(*tasks.values(), return_exceptions=True)
        resolved: Dict[str, Any] = {}
        for name, outcome in zip(tasks, outcomes):
            if isinstance(outcome, Exception):
                emit_exception(
                    module=__name__,
                    error=outcome,
                    session_id=session_id,
                    context={"task": name, "course_id": course_id},
                )
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            resolved[name] = outcome

        results: List[SimilarityResult] = resolved.get("retrieval") or []
        history: List[ConversationTurn] = resolved.get("history") or []
        references: Optional[ExternalReferences] = resolved.get("references")

        system_prompt, variant = self._render(course, results, supplemental, references)

        history_tokens = sum(estimate_tokens(turn.content) for turn in history)
        estimated = estimate_tokens(system_prompt) + history_tokens + estimate_tokens(query)
        truncated = False
        if estimated > self.settings.max_prompt_tokens:
            shortened = truncate_system_prompt(system_prompt, query, self.settings.max_prompt_tokens)
            truncated = shortened != system_prompt
            system_prompt = shortened
            estimated = estimate_tokens(system_prompt) + history_tokens + estimate_tokens(query)

        emit_prompt_event(
            variant=variant.value,
            course_id=course_id,
            session_id=session_id,
            estimated_tokens=estimated,
            chunks=len(results),
            history_turns=len(history),
            truncated=truncated,
        )
        return GroundedPrompt(
            query=query,
            system_prompt=system_prompt,
            variant=variant,
            referenced_documents=[
                ReferencedDocument(
                    title=result.document_title,
                    url=result.document_url,
                    chunk_id=result.chunk_id,
                    similarity=result.similarity,
                )
                for result in results
            ],
            history=history,
            external_references=references,
            truncated=truncated,
            estimated_tokens=estimated,
        )

    def _render(
        self,
        course: Optional[Course],
        results: List[SimilarityResult],
        supplemental: Optional[str],
        references: Optional[ExternalReferences],
    ) -> tuple[str, PromptVariant]:
        if results:
            context = self.assembler.assemble(results)
            prompt = render_grounded_prompt(course, context.text, supplemental=supplemental, references=references)
            return prompt, PromptVariant.GROUNDED
        if supplemental:
            return render_supplemental_prompt(course, supplemental, references=references), PromptVariant.SUPPLEMENTAL
        return render_no_material_prompt(course, references=references), PromptVariant.NO_MATERIAL

    async def answer(
        self,
        query: str,
        course_id: str,
        session_id: Optional[str] = None,
        *,
        supplemental: Optional[str] = None,
        include_references: bool = True,
    ) -> ChatAnswer:
        """Build the prompt and ask the chat model; chat failures propagate."""

        prompt = await self.build_grounded_prompt(
            query,
            course_id,
            session_id,
            supplemental=supplemental,
            include_references=include_references,
        )
        completion = await self.chat_client.complete_with_timeout(
            prompt.messages(),
            timeout=self.settings.chat_timeout_seconds,
            max_tokens=self.settings.chat_max_tokens,
            temperature=self.settings.chat_temperature,
        )
        return ChatAnswer(
            content=completion.content,
            model=completion.model,
            usage=completion.usage,
            variant=prompt.variant,
            referenced_documents=prompt.referenced_documents[:ANSWER_REFERENCE_LIMIT],
            external_references=prompt.external_references,
        )


__all__ = ["RAGOrchestrator"]
