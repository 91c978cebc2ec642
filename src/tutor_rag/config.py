"""Environment-driven runtime settings."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

LOGGER = logging.getLogger(__name__)

_FALSEY = {"0", "false", "no", "off"}


def _str_from_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; using default %s", name, value, default)
        return default


def _float_from_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s: %s; using default %s", name, value, default)
        return default


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() not in _FALSEY


@dataclass(frozen=True)
class Settings:
    """Tunables for chunking, retrieval, caching and the remote model calls."""

    chunk_max_tokens: int = 800
    chunk_overlap_tokens: int = 100
    similarity_threshold: float = 0.05
    max_chunks_per_query: int = 5
    vector_query_overfetch: int = 3
    context_token_budget: int = 4000
    history_token_budget: int = 2000
    max_prompt_tokens: int = 15000

    embedding_cache_size: int = 1000
    embedding_cache_ttl_seconds: float = 3600.0
    embedding_cache_sweep_interval_seconds: float = 300.0
    embedding_cache_approximate: bool = False
    embedding_cache_approximate_threshold: float = 0.85

    embedding_backend: str = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_timeout_seconds: float = 30.0
    embedding_max_attempts: int = 3

    chat_backend: str = "openai"
    chat_model: str = "gpt-4o-mini"
    chat_max_tokens: int = 1000
    chat_temperature: float = 0.7
    chat_timeout_seconds: float = 60.0

    ingest_delay_seconds: float = 0.1
    external_references_enabled: bool = True
    validate_external_urls: bool = False

    vector_store: str = "memory"
    chroma_persist_dir: str = "chroma_db"
    chroma_collection: str = "course_chunks"

    log_level: str = "INFO"
    log_dir: str = "logs"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            chunk_max_tokens=_int_from_env("CHUNK_MAX_TOKENS", cls.chunk_max_tokens),
            chunk_overlap_tokens=_int_from_env("CHUNK_OVERLAP_TOKENS", cls.chunk_overlap_tokens),
            similarity_threshold=_float_from_env("SIMILARITY_THRESHOLD", cls.similarity_threshold),
            max_chunks_per_query=_int_from_env("MAX_CHUNKS_PER_QUERY", cls.max_chunks_per_query),
            vector_query_overfetch=_int_from_env("VECTOR_QUERY_OVERFETCH", cls.vector_query_overfetch),
            context_token_budget=_int_from_env("CONTEXT_TOKEN_BUDGET", cls.context_token_budget),
            history_token_budget=_int_from_env("HISTORY_TOKEN_BUDGET", cls.history_token_budget),
            max_prompt_tokens=_int_from_env("MAX_PROMPT_TOKENS", cls.max_prompt_tokens),
            embedding_cache_size=_int_from_env("EMBEDDING_CACHE_SIZE", cls.embedding_cache_size),
            embedding_cache_ttl_seconds=_float_from_env(
                "EMBEDDING_CACHE_TTL", cls.embedding_cache_ttl_seconds
            ),
            embedding_cache_sweep_interval_seconds=_float_from_env(
                "EMBEDDING_CACHE_SWEEP_INTERVAL", cls.embedding_cache_sweep_interval_seconds
            ),
            embedding_cache_approximate=_env_flag(
                "EMBEDDING_CACHE_APPROXIMATE", cls.embedding_cache_approximate
            ),
            embedding_cache_approximate_threshold=_float_from_env(
                "EMBEDDING_CACHE_APPROXIMATE_THRESHOLD", cls.embedding_cache_approximate_threshold
            ),
            embedding_backend=_str_from_env("EMBEDDING_BACKEND", cls.embedding_backend).lower(),
            embedding_model=_str_from_env("EMBEDDING_MODEL", cls.embedding_model),
            embedding_timeout_seconds=_float_from_env("EMBEDDING_TIMEOUT", cls.embedding_timeout_seconds),
            embedding_max_attempts=_int_from_env("EMBEDDING_MAX_ATTEMPTS", cls.embedding_max_attempts),
            chat_backend=_str_from_env("CHAT_BACKEND", cls.chat_backend).lower(),
            chat_model=_str_from_env("CHAT_MODEL", cls.chat_model),
            chat_max_tokens=_int_from_env("CHAT_MAX_TOKENS", cls.chat_max_tokens),
            chat_temperature=_float_from_env("CHAT_TEMPERATURE", cls.chat_temperature),
            chat_timeout_seconds=_float_from_env("CHAT_TIMEOUT", cls.chat_timeout_seconds),
            ingest_delay_seconds=_float_from_env("INGEST_DELAY_SECONDS", cls.ingest_delay_seconds),
            external_references_enabled=_env_flag(
                "ENABLE_EXTERNAL_REFERENCES", cls.external_references_enabled
            ),
            validate_external_urls=_env_flag("VALIDATE_EXTERNAL_URLS", cls.validate_external_urls),
            vector_store=_str_from_env("VECTOR_STORE", cls.vector_store).lower(),
            chroma_persist_dir=_str_from_env("CHROMA_PERSIST_DIR", cls.chroma_persist_dir),
            chroma_collection=_str_from_env("CHROMA_COLLECTION", cls.chroma_collection),
            log_level=_str_from_env("LOG_LEVEL", cls.log_level).upper(),
            log_dir=_str_from_env("LOG_DIR", cls.log_dir),
        )


@lru_cache()
def get_settings() -> Settings:
    """Return settings read once from the environment."""

    return Settings.from_env()


def reset_settings_cache() -> None:
    """Clear the cached settings (primarily for testing)."""

    get_settings.cache_clear()  # type: ignore[attr-defined]


__all__ = ["Settings", "get_settings", "reset_settings_cache"]
