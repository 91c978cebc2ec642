"""Embedding clients and the cache-aware embedding path."""
from __future__ import annotations

import asyncio
import hashlib
import logging
import random
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import openai
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential_jitter
from tenacity.wait import wait_base

from .config import Settings
from .embedding_cache import EmbeddingCache
from .errors import EmbeddingServiceError, FailureKind, is_transient
from .openai_support import classify_openai_error, make_async_client
from .telemetry import emit_embeddings_event

LOGGER = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "text-embedding-3-small"
DEFAULT_SENTENCE_TRANSFORMER = "sentence-transformers/all-MiniLM-L6-v2"


class EmbeddingClient(ABC):
    """Turns one text into one fixed-length vector. Performs no caching."""

    model_name: str = "unknown"

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Return the embedding of ``text`` or raise :class:`EmbeddingServiceError`."""


class OpenAIEmbeddingClient(EmbeddingClient):
    """Embedding client backed by the OpenAI embeddings endpoint."""

    def __init__(
        self,
        model: str = DEFAULT_OPENAI_MODEL,
        *,
        client: Any | None = None,
        api_key: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.model_name = model
        self._client = client
        self._api_key = api_key
        self._timeout = timeout

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = make_async_client(self._api_key, timeout=self._timeout)
        return self._client

    async def embed(self, text: str) -> List[float]:
        try:
            response = await self._get_client().embeddings.create(model=self.model_name, input=text)
        except openai.OpenAIError as error:
            kind, status_code = classify_openai_error(error)
            raise EmbeddingServiceError(
                f"Embedding request failed: {error}",
                kind=kind,
                status_code=status_code,
                cause=error,
            ) from error

        if not response.data:
            raise EmbeddingServiceError("Embedding response contained no vectors", kind=FailureKind.TRANSIENT)
        return [float(value) for value in response.data[0].embedding]


class SentenceTransformerEmbeddingClient(EmbeddingClient):
    """Local embedding client using a Sentence Transformers model.

    The model is loaded on first use and encoding runs in a worker thread.
    """

    def __init__(self, model_name_or_path: str = DEFAULT_SENTENCE_TRANSFORMER, *, device: str | None = None) -> None:
        self.model_name = model_name_or_path
        self._device = device
        self._model = None
        self._lock = threading.RLock()

    def _load(self):
        with self._lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer

                LOGGER.info("Loading sentence-transformers model %s", self.model_name)
                try:
                    self._model = SentenceTransformer(self.model_name, device=self._device)
                except Exception as error:  # model download and device errors vary widely
                    raise EmbeddingServiceError(
                        f"Failed to load embedding model {self.model_name!r}",
                        kind=FailureKind.PERMANENT,
                        cause=error,
                    ) from error
            return self._model

    def _encode(self, text: str) -> List[float]:
        model = self._load()
        vector = model.encode(
            [text],
            convert_to_numpy=True,
            show_progress_bar=False,
            normalize_embeddings=False,
        )
        return [float(value) for value in vector[0].tolist()]

    async def embed(self, text: str) -> List[float]:
        return await asyncio.to_thread(self._encode, text)


class DeterministicEmbeddingClient(EmbeddingClient):
    """Return deterministic pseudo-random vectors derived from each text.

    Used for offline development and tests; the vectors carry no meaning.
    """

    def __init__(self, dimension: int = 64) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be a positive integer")
        self.dimension = dimension
        self.model_name = f"deterministic-{dimension}"

    async def embed(self, text: str) -> List[float]:
        seed = hashlib.sha256(text.encode("utf-8")).hexdigest()
        rng = random.Random(seed)
        return [(rng.random() * 2.0) - 1.0 for _ in range(self.dimension)]


def _log_retry(retry_state) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    LOGGER.warning(
        "Embedding attempt %s failed (%s); retrying",
        retry_state.attempt_number,
        error,
    )


class CachedEmbedder:
    """Embed text through the cache first, then the client with bounded retries."""

    def __init__(
        self,
        client: EmbeddingClient,
        cache: EmbeddingCache,
        *,
        approximate: bool = False,
        approximate_threshold: float = 0.85,
        timeout: float = 30.0,
        max_attempts: int = 3,
        wait: Optional[wait_base] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.client = client
        self.cache = cache
        self.approximate = approximate
        self.approximate_threshold = approximate_threshold
        self.timeout = timeout
        self.max_attempts = max_attempts
        self._wait = wait or wait_exponential_jitter(initial=0.5, max=8.0, jitter=0.5)

    async def embed(self, text: str) -> List[float]:
        cached = self.cache.get(text)
        if cached is not None:
            return cached

        if self.approximate:
            approximate = self.cache.find_approximate(text, self.approximate_threshold)
            if approximate is not None:
                return approximate

        vector = await self._embed_with_retry(text)
        self.cache.set(text, vector)
        return vector

    async def _embed_once(self, text: str) -> List[float]:
        try:
            return await asyncio.wait_for(self.client.embed(text), timeout=self.timeout)
        except asyncio.TimeoutError as error:
            raise EmbeddingServiceError(
                f"Embedding request timed out after {self.timeout:.1f}s",
                kind=FailureKind.TRANSIENT,
                cause=error,
            ) from error

    async def _embed_with_retry(self, text: str) -> List[float]:
        started = time.perf_counter()
        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=self._wait,
                retry=retry_if_exception(is_transient),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    vector = await self._embed_once(text)
        except EmbeddingServiceError as error:
            emit_embeddings_event(
                model=self.client.model_name,
                count=1,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                attempts=attempts,
                errors=[str(error)],
            )
            raise

        emit_embeddings_event(
            model=self.client.model_name,
            count=1,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            attempts=attempts,
        )
        return vector


def build_embedding_client(settings: Settings) -> EmbeddingClient:
    """Instantiate the embedding client named by ``EMBEDDING_BACKEND``."""

    backend = settings.embedding_backend
    if backend == "openai":
        return OpenAIEmbeddingClient(settings.embedding_model, timeout=settings.embedding_timeout_seconds)
    if backend in {"sentence-transformers", "sentence_transformers"}:
        model = settings.embedding_model
        if model == DEFAULT_OPENAI_MODEL:
            model = DEFAULT_SENTENCE_TRANSFORMER
        return SentenceTransformerEmbeddingClient(model)
    if backend == "deterministic":
        return DeterministicEmbeddingClient()
    raise ValueError(f"Unsupported EMBEDDING_BACKEND: {backend!r}")


def build_cached_embedder(settings: Settings, cache: EmbeddingCache, client: EmbeddingClient | None = None) -> CachedEmbedder:
    return CachedEmbedder(
        client or build_embedding_client(settings),
        cache,
        approximate=settings.embedding_cache_approximate,
        approximate_threshold=settings.embedding_cache_approximate_threshold,
        timeout=settings.embedding_timeout_seconds,
        max_attempts=settings.embedding_max_attempts,
    )


__all__ = [
    "CachedEmbedder",
    "DeterministicEmbeddingClient",
    "EmbeddingClient",
    "OpenAIEmbeddingClient",
    "SentenceTransformerEmbeddingClient",
    "build_cached_embedder",
    "build_embedding_client",
]
