"""Text normalisation utilities."""
from __future__ import annotations

import re
import unicodedata

_WHITESPACE_RE = re.compile(r"[ \t\f\v]+")
_MULTIPLE_NEWLINES_RE = re.compile(r"\n{3,}")
_TRAILING_SPACE_RE = re.compile(r" +\n")
_LEADING_SPACE_RE = re.compile(r"\n +")
_ANY_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Normalise whitespace and Unicode representation, keeping paragraph breaks."""

    normalized = unicodedata.normalize("NFC", text)
    normalized = normalized.replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")
    normalized = _WHITESPACE_RE.sub(" ", normalized)
    normalized = _TRAILING_SPACE_RE.sub("\n", normalized)
    normalized = _LEADING_SPACE_RE.sub("\n", normalized)
    normalized = _MULTIPLE_NEWLINES_RE.sub("\n\n", normalized)
    return normalized.strip()


def collapse_whitespace(text: str) -> str:
    """Collapse every whitespace run (newlines included) into one space."""

    return _ANY_WHITESPACE_RE.sub(" ", text).strip()
