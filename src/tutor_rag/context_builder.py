"""Render retrieved chunks into a token-budgeted, per-document prompt section."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from .ingest.chunking import estimate_tokens
from .models import SimilarityResult

LOGGER = logging.getLogger(__name__)

DOCUMENT_SEPARATOR = "\n\n---\n\n"
TRUNCATION_MARKER = "[Further sections of this document omitted to save space]\n"


@dataclass(slots=True)
class AssembledContext:
    text: str
    token_count: int
    included_chunks: int
    documents: List[str] = field(default_factory=list)
    truncated: bool = False


def _document_header(title: str) -> str:
    return f"## Document: {title}\n\n"


def _chunk_section(rank: int, result: SimilarityResult) -> str:
    return f"**Section {rank}** (Relevance: {result.similarity * 100:.1f}%)\n{result.content}\n\n"


class ContextAssembler:
    """Group ranked results by document and stop at a token budget.

    Documents appear in the order they are first met in the ranked input,
    so the document holding the best chunk leads. Only chunk sections count
    against the budget; when the next section of a document would overflow
    it, that document keeps its header and gets a truncation marker (even
    when none of its sections fit) and assembly moves on to the
    next document. Once the budget is spent no further documents are read.
    """

    def __init__(self, token_budget: int = 4000) -> None:
        if token_budget <= 0:
            raise ValueError("token_budget must be positive")
        self.token_budget = token_budget

    def assemble(self, results: Sequence[SimilarityResult]) -> AssembledContext:
        grouped: Dict[str, List[tuple[int, SimilarityResult]]] = {}
        for rank, result in enumerate(results, start=1):
            grouped.setdefault(result.document_title, []).append((rank, result))

        sections: List[str] = []
        documents: List[str] = []
        used_tokens = 0
        included = 0
        truncated = False

        for position, (title, ranked_chunks) in enumerate(grouped.items()):
            body = _document_header(title)
            for rank, result in ranked_chunks:
                section = _chunk_section(rank, result)
                section_tokens = estimate_tokens(section)
                if used_tokens + section_tokens > self.token_budget:
                    body += TRUNCATION_MARKER
                    truncated = True
                    break
                body += section
                used_tokens += section_tokens
                included += 1

            sections.append(body.rstrip())
            documents.append(title)

            if used_tokens >= self.token_budget:
                if position + 1 < len(grouped):
                    truncated = True
                break

        text = DOCUMENT_SEPARATOR.join(sections)
        if truncated:
            LOGGER.info("Context truncated at %s tokens (%s chunks kept of %s)", used_tokens, included, len(results))
        return AssembledContext(
            text=text,
            token_count=used_tokens,
            included_chunks=included,
            documents=documents,
            truncated=truncated,
        )


__all__ = ["AssembledContext", "ContextAssembler", "DOCUMENT_SEPARATOR", "TRUNCATION_MARKER"]
