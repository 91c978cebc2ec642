"""Format-specific text extractors and the dispatching service."""
from __future__ import annotations

import html
import io
import logging
import re
import zipfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, Comment
from docx import Document as DocxDocument
from PyPDF2 import PdfReader

from tutor_rag.errors import ExtractionError
from tutor_rag.models import DocumentFormat, ExtractionFailure, ExtractionOutcome, ExtractionResult

from .format_detection import DocumentFormatDetector
from .language import LanguageDetector
from .normalization import collapse_whitespace, normalize_text

LOGGER = logging.getLogger(__name__)

PPTX_PLACEHOLDER = (
    "PowerPoint presentation received. Automatic text extraction could not read "
    "the slide content; refer to the original file for details."
)

_SLIDE_NAME_RE = re.compile(r"^ppt/slides/slide(\d+)\.xml$")
_PPTX_TEXT_RE = re.compile(r"<a:t(?:\s[^>]*)?>([^<]*)</a:t>")


@dataclass(slots=True)
class RawExtraction:
    """Un-normalised text as a single extractor returns it."""

    text: str
    page_count: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class PDFExtractor:
    """Extract page-aware text from PDF documents."""

    def extract(self, data: bytes) -> RawExtraction:
        try:
            reader = PdfReader(io.BytesIO(data))
            page_count = len(reader.pages)
        except Exception as error:  # PdfReadError is not the only failure mode
            raise ExtractionError("PDF payload could not be parsed", reason="corrupt", cause=error) from error

        pages: List[str] = []
        for index, page in enumerate(reader.pages, start=1):
            try:
                text = page.extract_text() or ""
            except Exception as error:  # PyPDF2 raises a wide range of errors on damaged pages
                LOGGER.warning("Failed to extract text from PDF page %s: %s", index, error)
                text = ""
            pages.append(text)
        return RawExtraction(text="\n\n".join(pages), page_count=page_count)


class DocxExtractor:
    """Extract raw text from Microsoft Word documents."""

    def extract(self, data: bytes) -> RawExtraction:
        try:
            document = DocxDocument(io.BytesIO(data))
        except Exception as error:  # not a zip or not a word package
            raise ExtractionError("DOCX payload could not be parsed", reason="corrupt", cause=error) from error

        parts = [paragraph.text for paragraph in document.paragraphs if paragraph.text]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    parts.append(" | ".join(cells))
        return RawExtraction(text="\n\n".join(parts))


class PptxExtractor:
    """Best-effort text-node scraping for PowerPoint files.

    Never raises: malformed archives or slides yield a placeholder text and
    an ``error`` note in the metadata instead.
    """

    def extract(self, data: bytes) -> RawExtraction:
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                slides = sorted(
                    (int(match.group(1)), name)
                    for name in archive.namelist()
                    if (match := _SLIDE_NAME_RE.match(name))
                )
                sections: List[str] = []
                for number, name in slides:
                    xml = archive.read(name).decode("utf-8", errors="ignore")
                    texts = [html.unescape(node).strip() for node in _PPTX_TEXT_RE.findall(xml)]
                    texts = [text for text in texts if text]
                    if texts:
                        sections.append(f"Slide {number}:\n" + "\n".join(texts))
        except Exception as error:  # tolerant by contract
            LOGGER.warning("PPTX text scraping failed: %s", error)
            return RawExtraction(
                text=PPTX_PLACEHOLDER,
                metadata={"placeholder": True, "error": str(error) or error.__class__.__name__},
            )

        if not sections:
            return RawExtraction(
                text=PPTX_PLACEHOLDER,
                page_count=len(slides) or None,
                metadata={"placeholder": True, "error": "no text nodes found in slides"},
            )
        return RawExtraction(text="\n\n".join(sections), page_count=len(slides))


class HTMLExtractor:
    """Drop scripts, styles and comments from an HTML page and keep its text."""

    def extract(self, data: bytes) -> RawExtraction:
        soup = BeautifulSoup(_decode(data), "html.parser")
        for element in soup(["script", "style", "noscript", "template"]):
            element.decompose()
        for comment in soup.find_all(string=lambda node: isinstance(node, Comment)):
            comment.extract()
        return RawExtraction(text=collapse_whitespace(soup.get_text(" ")))


class TextExtractor:
    """Extract text from plaintext documents."""

    def extract(self, data: bytes) -> RawExtraction:
        return RawExtraction(text=_decode(data))


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


class TextExtractionService:
    """Dispatch a byte buffer to the matching extractor and normalise the text."""

    def __init__(self, language_detector: Optional[LanguageDetector] = None) -> None:
        self.language_detector = language_detector or LanguageDetector()
        self._extractors = {
            DocumentFormat.PDF: PDFExtractor(),
            DocumentFormat.DOCX: DocxExtractor(),
            DocumentFormat.PPTX: PptxExtractor(),
            DocumentFormat.HTML: HTMLExtractor(),
            DocumentFormat.TXT: TextExtractor(),
        }

    def extract(
        self,
        data: bytes,
        content_type: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> ExtractionResult:
        """Return normalised text for ``data`` or raise :class:`ExtractionError`."""

        document_format = DocumentFormatDetector.detect(file_name, content_type)
        if not data:
            raise ExtractionError(f"Empty {document_format.value} payload", reason="empty")

        raw = self._extractors[document_format].extract(data)
        text = normalize_text(raw.text)
        if not text:
            raise ExtractionError(
                f"No text could be extracted from {file_name or document_format.value}",
                reason="empty",
            )

        metadata = dict(raw.metadata)
        metadata.setdefault("characters", len(text))
        metadata["language"] = self.language_detector.detect(text)
        LOGGER.info(
            "Extracted %s characters from %s (%s)",
            len(text),
            file_name or "<buffer>",
            document_format.value,
        )
        return ExtractionResult(
            text=text,
            format=document_format,
            page_count=raw.page_count,
            metadata=metadata,
        )

    def try_extract(
        self,
        data: bytes,
        content_type: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> ExtractionOutcome:
        """Like :meth:`extract` but returns an :class:`ExtractionFailure` instead of raising."""

        try:
            return self.extract(data, content_type, file_name)
        except ExtractionError as error:
            return ExtractionFailure(reason=error.reason, message=str(error))


__all__ = [
    "DocxExtractor",
    "HTMLExtractor",
    "PDFExtractor",
    "PPTX_PLACEHOLDER",
    "PptxExtractor",
    "RawExtraction",
    "TextExtractionService",
    "TextExtractor",
]
