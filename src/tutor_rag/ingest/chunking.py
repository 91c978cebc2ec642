"""Split extracted text into overlapping, sentence-aware chunks."""
from __future__ import annotations

import logging
import math
from typing import List

from tutor_rag.errors import ChunkingConfigError
from tutor_rag.models import ChunkDraft

LOGGER = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
BREAK_MIN_FRACTION = 0.5


def estimate_tokens(text: str) -> int:
    """Approximate token count as ``ceil(len / 4)``.

    Every budget in the retrieval path uses this same estimate, so it must
    not be swapped for a real tokenizer in one place only.
    """

    return math.ceil(len(text) / CHARS_PER_TOKEN)


class TextChunker:
    """Sliding-window chunker that prefers to cut after a ``.`` or newline."""

    def __init__(self, max_tokens: int = 800, overlap_tokens: int = 100) -> None:
        if max_tokens <= 0:
            raise ChunkingConfigError(f"max_tokens must be positive, got {max_tokens}")
        if overlap_tokens < 0:
            raise ChunkingConfigError(f"overlap_tokens must not be negative, got {overlap_tokens}")
        if overlap_tokens >= max_tokens:
            raise ChunkingConfigError(
                f"overlap_tokens ({overlap_tokens}) must be smaller than max_tokens ({max_tokens})"
            )
        self.max_tokens = max_tokens
        self.overlap_tokens = overlap_tokens

    @property
    def max_chars(self) -> int:
        return self.max_tokens * CHARS_PER_TOKEN

    @property
    def overlap_chars(self) -> int:
        return self.overlap_tokens * CHARS_PER_TOKEN

    def chunk(self, text: str) -> List[ChunkDraft]:
        if not text or not text.strip():
            return []

        max_chars = self.max_chars
        overlap_chars = self.overlap_chars
        text_length = len(text)

        if text_length <= max_chars:
            content = text.strip()
            return [ChunkDraft(index=0, content=content, token_count=estimate_tokens(content))]

        drafts: List[ChunkDraft] = []
        start = 0
        while start < text_length:
            end = min(start + max_chars, text_length)
            if end < text_length:
                end = self._snap_to_break(text, start, end)

            content = text[start:end].strip()
            if content:
                drafts.append(
                    ChunkDraft(index=len(drafts), content=content, token_count=estimate_tokens(content))
                )

            if end >= text_length:
                break
            next_start = end - overlap_chars
            # a snapped window can be shorter than the overlap
            start = next_start if next_start > start else end

        LOGGER.debug("Split %s characters into %s chunks", text_length, len(drafts))
        return drafts

    def _snap_to_break(self, text: str, start: int, end: int) -> int:
        break_point = max(text.rfind(".", start, end + 1), text.rfind("\n", start, end + 1))
        if break_point > start + self.max_chars * BREAK_MIN_FRACTION:
            return break_point + 1
        return end


__all__ = ["CHARS_PER_TOKEN", "TextChunker", "estimate_tokens"]
