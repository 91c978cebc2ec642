"""Process-local, TTL- and size-bounded cache for text embeddings."""
from __future__ import annotations

import hashlib
import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from cachetools import TTLCache

from .telemetry import emit_cache_event

LOGGER = logging.getLogger(__name__)

KEY_LENGTH = 16
APPROXIMATE_PREFIX_LENGTH = 8

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_cache_text(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text.strip().lower())


def make_cache_key(text: str) -> str:
    """Return the truncated SHA-256 of the normalised text."""

    digest = hashlib.sha256(normalize_cache_text(text).encode("utf-8")).hexdigest()
    return digest[:KEY_LENGTH]


@dataclass(slots=True)
class CacheEntry:
    vector: List[float]
    created_at: float
    last_accessed: float
    text_length: int


@dataclass(slots=True)
class CacheStats:
    size: int
    max_size: int
    ttl_seconds: float
    hit_count: int
    miss_count: int
    eviction_count: int
    hit_rate: int

    def as_dict(self) -> dict:
        return {
            "size": self.size,
            "max_size": self.max_size,
            "ttl_seconds": self.ttl_seconds,
            "hit_count": self.hit_count,
            "miss_count": self.miss_count,
            "eviction_count": self.eviction_count,
            "hit_rate": self.hit_rate,
        }


class _EntryStore(TTLCache):
    """``TTLCache`` that remembers the keys it dropped to make room."""

    def __init__(self, maxsize: int, ttl: float, timer: Callable[[], float]) -> None:
        super().__init__(maxsize=maxsize, ttl=ttl, timer=timer)
        self.evicted: List[str] = []

    def popitem(self):
        key, value = super().popitem()
        self.evicted.append(key)
        return key, value


class EmbeddingCache:
    """Content-addressed embedding cache with TTL expiry and LRU eviction.

    Storage is a ``cachetools.TTLCache``: an entry expires once its age
    reaches ``ttl_seconds`` and a new key at capacity pushes out the least
    recently read entry. Expired entries are removed under the lock before
    every read or write so that they show up in the eviction counter. The
    cache is shared by concurrent requests and by the background sweeper
    thread.
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl_seconds: float = 3600.0,
        *,
        sweep_interval: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be a positive integer")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries = self._new_store()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def _new_store(self) -> _EntryStore:
        return _EntryStore(maxsize=self.max_size, ttl=self.ttl_seconds, timer=self._clock)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expire(self, now: float) -> int:
        expired = len(self._entries.expire(now))
        self._evictions += expired
        return expired

    def get(self, text: str) -> Optional[List[float]]:
        key = make_cache_key(text)
        with self._lock:
            now = self._clock()
            self._expire(now)
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                emit_cache_event("cache.miss", key=key)
                return None
            entry.last_accessed = now
            self._hits += 1
        emit_cache_event("cache.hit", key=key)
        return list(entry.vector)

    def set(self, text: str, vector: Sequence[float]) -> None:
        key = make_cache_key(text)
        with self._lock:
            now = self._clock()
            self._expire(now)
            self._entries[key] = CacheEntry(
                vector=[float(value) for value in vector],
                created_at=now,
                last_accessed=now,
                text_length=len(text),
            )
            evicted = list(self._entries.evicted)
            self._entries.evicted.clear()
            self._evictions += len(evicted)
        for evicted_key in evicted:
            emit_cache_event("cache.evict", key=evicted_key, reason="capacity")

    def find_approximate(self, text: str, threshold: float = 0.8) -> Optional[List[float]]:
        """Weak fuzzy lookup by text-length ratio and key prefix.

        This is not a semantic comparison; it exists purely to lift the hit
        rate and must only be consulted after :meth:`get` missed.
        """

        key = make_cache_key(text)
        prefix = key[:APPROXIMATE_PREFIX_LENGTH]
        text_length = len(text)
        with self._lock:
            now = self._clock()
            self._expire(now)
            candidates = [
                cached_key for cached_key in self._entries if cached_key[:APPROXIMATE_PREFIX_LENGTH] == prefix
            ]
            for cached_key in candidates:
                entry = self._entries[cached_key]
                longest = max(text_length, entry.text_length)
                ratio = min(text_length, entry.text_length) / longest if longest else 1.0
                if ratio >= threshold:
                    entry.last_accessed = now
                    self._hits += 1
                    break
            else:
                return None
        emit_cache_event("cache.approximate_hit", key=cached_key, query_key=key, ratio=round(ratio, 3))
        return list(entry.vector)

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""

        with self._lock:
            removed = self._expire(self._clock())
            remaining = len(self._entries)
        if removed:
            emit_cache_event("cache.sweep", removed=removed, size=remaining)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries = self._new_store()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
        emit_cache_event("cache.clear")

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            hit_rate = round(self._hits / total * 100) if total else 0
            return CacheStats(
                size=len(self._entries),
                max_size=self.max_size,
                ttl_seconds=self.ttl_seconds,
                hit_count=self._hits,
                miss_count=self._misses,
                eviction_count=self._evictions,
                hit_rate=hit_rate,
            )

    @property
    def running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def start(self) -> None:
        """Launch the periodic expiry sweep in a daemon thread."""

        if self.running:
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            name="embedding-cache-sweeper",
            daemon=True,
        )
        self._sweeper.start()
        LOGGER.info("Embedding cache sweeper started (interval %.0fs)", self.sweep_interval)

    def stop(self) -> None:
        """Stop the sweeper and drop all cached vectors."""

        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5.0)
            self._sweeper = None
        self.clear()
        LOGGER.info("Embedding cache stopped")

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.sweep_interval):
            try:
                self.sweep()
            except Exception:  # keep the sweeper alive
                LOGGER.exception("Embedding cache sweep failed")


__all__ = [
    "CacheEntry",
    "CacheStats",
    "EmbeddingCache",
    "make_cache_key",
    "normalize_cache_text",
]
