"""Analyse a student's own uploaded document into supplemental prompt context."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ChatServiceError
from .ingest.chunking import TextChunker
from .ingest.extractors import TextExtractionService
from .llm import ChatCompletionClient
from .models import ChatUsage

LOGGER = logging.getLogger(__name__)

SINGLE_PASS_CHAR_LIMIT = 8000
MAX_ANALYSED_CHUNKS = 3
ANALYSIS_CHUNK_TOKENS = 800
ANALYSIS_OVERLAP_TOKENS = 100

ANALYSIS_SYSTEM_PROMPT = (
    "You are an educational assistant. Analyse the document a student shared for the course "
    "\"{course_name}\". Summarise its main topics, list the key concepts and definitions, and "
    "note anything the student may need to review. Be concise and structured."
)
SUMMARY_SYSTEM_PROMPT = (
    "You are an educational assistant. Combine the partial analyses below, which cover "
    "consecutive parts of one student document for the course \"{course_name}\", into a "
    "single concise analysis. Keep the structure: main topics, key concepts, points to review."
)


@dataclass(slots=True)
class SupplementalContext:
    analysis: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    usage: ChatUsage = field(default_factory=ChatUsage)


class UploadedDocumentAnalyzer:
    """Extract an uploaded file and ask the chat model for an educational analysis.

    Short texts get a single analysis call. Longer texts are chunked, the
    first few chunks are analysed one by one, and the partial analyses are
    merged by a final summary call. Image uploads are not supported.
    """

    def __init__(
        self,
        chat_client: ChatCompletionClient,
        *,
        extractor: Optional[TextExtractionService] = None,
        chunker: Optional[TextChunker] = None,
        timeout: float = 60.0,
        max_tokens: int = 1000,
        delay_seconds: float = 0.1,
    ) -> None:
        self.chat_client = chat_client
        self.extractor = extractor or TextExtractionService()
        self.chunker = chunker or TextChunker(ANALYSIS_CHUNK_TOKENS, ANALYSIS_OVERLAP_TOKENS)
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.delay_seconds = delay_seconds

    async def analyze(
        self,
        data: bytes,
        content_type: Optional[str] = None,
        course_name: str = "this course",
        *,
        file_name: Optional[str] = None,
    ) -> SupplementalContext:
        """Return the analysis; raises ``ExtractionError`` or ``ChatServiceError``."""

        extraction = await asyncio.to_thread(self.extractor.extract, data, content_type, file_name)
        text = extraction.text
        usage = ChatUsage()
        metadata: Dict[str, Any] = {
            "format": extraction.format.value,
            "page_count": extraction.page_count,
            "characters": len(text),
            "language": extraction.metadata.get("language"),
            "file_name": file_name,
        }

        if len(text) <= SINGLE_PASS_CHAR_LIMIT:
            analysis = await self._ask(ANALYSIS_SYSTEM_PROMPT, course_name, text, usage)
            metadata["chunks_analysed"] = 1
            return SupplementalContext(analysis=analysis, metadata=metadata, usage=usage)

        drafts = self.chunker.chunk(text)
        partials: List[str] = []
        for position, draft in enumerate(drafts[:MAX_ANALYSED_CHUNKS]):
            if position and self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)
            try:
                partial = await self._ask(ANALYSIS_SYSTEM_PROMPT, course_name, draft.content, usage)
            except ChatServiceError as error:
                LOGGER.warning("Analysis of part %s failed: %s", draft.index + 1, error)
                partial = f"[Part {draft.index + 1} could not be analysed]"
            partials.append(f"Part {draft.index + 1}:\n{partial}")

        combined = "\n\n".join(partials)
        summary = await self._ask(SUMMARY_SYSTEM_PROMPT, course_name, combined, usage)
        metadata["chunks_total"] = len(drafts)
        metadata["chunks_analysed"] = len(partials)
        return SupplementalContext(analysis=summary, metadata=metadata, usage=usage)

    async def _ask(self, system_template: str, course_name: str, content: str, usage: ChatUsage) -> str:
        messages = [
            {"role": "system", "content": system_template.format(course_name=course_name)},
            {"role": "user", "content": content},
        ]
        completion = await self.chat_client.complete_with_timeout(
            messages,
            timeout=self.timeout,
            max_tokens=self.max_tokens,
            temperature=0.3,
        )
        usage.prompt_tokens += completion.usage.prompt_tokens
        usage.completion_tokens += completion.usage.completion_tokens
        usage.total_tokens += completion.usage.total_tokens
        return completion.content.strip()


__all__ = ["SupplementalContext", "UploadedDocumentAnalyzer"]
