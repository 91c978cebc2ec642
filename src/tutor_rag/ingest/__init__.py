"""Document ingestion: format detection, extraction, chunking and the pipeline."""
from __future__ import annotations

from .chunking import TextChunker, estimate_tokens
from .extractors import TextExtractionService
from .format_detection import DocumentFormatDetector
from .normalization import normalize_text

__all__ = [
    "DocumentFormatDetector",
    "TextChunker",
    "TextExtractionService",
    "estimate_tokens",
    "normalize_text",
]
