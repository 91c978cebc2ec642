"""Utilities for detecting the format of course materials."""
from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from tutor_rag.errors import ExtractionError
from tutor_rag.models import DocumentFormat

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PPTX_MIME = "application/vnd.openxmlformats-officedocument.presentationml.presentation"


class DocumentFormatDetector:
    """Detects the document format from a declared MIME type or a file name."""

    _MIME_MAP = {
        PDF_MIME: DocumentFormat.PDF,
        DOCX_MIME: DocumentFormat.DOCX,
        PPTX_MIME: DocumentFormat.PPTX,
        "text/html": DocumentFormat.HTML,
        "application/xhtml+xml": DocumentFormat.HTML,
        "text/plain": DocumentFormat.TXT,
        "text/markdown": DocumentFormat.TXT,
    }

    _SUFFIX_MAP = {
        "pdf": DocumentFormat.PDF,
        "docx": DocumentFormat.DOCX,
        "pptx": DocumentFormat.PPTX,
        "html": DocumentFormat.HTML,
        "htm": DocumentFormat.HTML,
        "txt": DocumentFormat.TXT,
        "md": DocumentFormat.TXT,
    }

    @classmethod
    def detect(cls, file_name: Optional[str] = None, mime_type: Optional[str] = None) -> DocumentFormat:
        """Return the detected document format.

        The declared MIME type wins (parameters such as ``charset`` are
        ignored), then ``mimetypes.guess_type`` on the name, then the bare
        suffix. URLs are accepted as names.
        """

        if mime_type:
            base_type = mime_type.split(";", 1)[0].strip().lower()
            if base_type in cls._MIME_MAP:
                return cls._MIME_MAP[base_type]

        if file_name:
            path = urlparse(file_name).path or file_name
            guessed_type, _ = mimetypes.guess_type(path)
            if guessed_type and guessed_type in cls._MIME_MAP:
                return cls._MIME_MAP[guessed_type]

            suffix = Path(path).suffix.lower().lstrip(".")
            if suffix in cls._SUFFIX_MAP:
                return cls._SUFFIX_MAP[suffix]

        raise ExtractionError(
            f"Unsupported document type: {mime_type or file_name or 'unknown'}",
            reason="unsupported",
        )
