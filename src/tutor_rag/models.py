"""Domain records shared by the ingestion and retrieval paths."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Union

if TYPE_CHECKING:  # pragma: no cover - import for type checking only
    from .references import ExternalReferences


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentFormat(str, Enum):
    """Supported course-material formats."""

    PDF = "pdf"
    DOCX = "docx"
    PPTX = "pptx"
    HTML = "html"
    TXT = "txt"


class DocumentStatus(str, Enum):
    UNPROCESSED = "unprocessed"
    PROCESSED = "processed"
    FAILED = "failed"


class PromptVariant(str, Enum):
    """Which system prompt was rendered for a question."""

    GROUNDED = "grounded"
    SUPPLEMENTAL = "supplemental"
    NO_MATERIAL = "no_material"


@dataclass(slots=True)
class Course:
    id: str
    name: str
    code: str
    description: Optional[str] = None


@dataclass(slots=True)
class Document:
    """A course material registered for processing."""

    id: str
    course_id: str
    title: str
    source_url: Optional[str] = None
    format: Optional[DocumentFormat] = None
    content_type: Optional[str] = None
    page_count: Optional[int] = None
    file_size: Optional[int] = None
    status: DocumentStatus = DocumentStatus.UNPROCESSED
    error: Optional[str] = None

    @property
    def is_processed(self) -> bool:
        return self.status is DocumentStatus.PROCESSED


@dataclass(slots=True)
class ChunkDraft:
    """Chunker output before it has been embedded."""

    index: int
    content: str
    token_count: int


@dataclass(slots=True)
class Chunk:
    """An embedded slice of a document's text."""

    id: str
    document_id: str
    index: int
    content: str
    token_count: int
    vector: Optional[List[float]]
    page_number: Optional[int] = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(slots=True)
class SimilarityResult:
    """A chunk joined with its score and parent document/course labels."""

    chunk_id: str
    document_id: str
    content: str
    token_count: int
    chunk_index: int
    similarity: float
    document_title: str
    document_url: Optional[str] = None
    course_name: Optional[str] = None
    course_code: Optional[str] = None
    page_number: Optional[int] = None


@dataclass(slots=True)
class StoredMessage:
    """A row of the session message log as the message store keeps it."""

    content: str
    is_from_user: bool
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(slots=True)
class ConversationTurn:
    role: str
    content: str

    def as_message(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class ExtractionResult:
    """Successful extraction outcome."""

    text: str
    format: DocumentFormat
    page_count: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ExtractionFailure:
    """Failed extraction outcome; ``reason`` is unsupported, corrupt or empty."""

    reason: str
    message: str


ExtractionOutcome = Union[ExtractionResult, ExtractionFailure]


@dataclass(slots=True)
class ReferencedDocument:
    title: str
    url: Optional[str]
    chunk_id: str
    similarity: float


@dataclass(slots=True)
class GroundedPrompt:
    """Everything needed to send a question to the chat model."""

    query: str
    system_prompt: str
    variant: PromptVariant
    referenced_documents: List[ReferencedDocument] = field(default_factory=list)
    history: List[ConversationTurn] = field(default_factory=list)
    external_references: Optional["ExternalReferences"] = None
    truncated: bool = False
    estimated_tokens: int = 0

    def messages(self) -> List[Dict[str, str]]:
        """Return ``[system, *history, user]`` chat messages."""

        payload = [{"role": "system", "content": self.system_prompt}]
        payload.extend(turn.as_message() for turn in self.history)
        payload.append({"role": "user", "content": self.query})
        return payload


@dataclass(slots=True)
class ChatUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(slots=True)
class ChatAnswer:
    content: str
    model: str
    usage: ChatUsage
    variant: PromptVariant
    referenced_documents: Sequence[ReferencedDocument] = ()
    external_references: Optional["ExternalReferences"] = None


@dataclass(slots=True)
class ProcessingResult:
    """Outcome of processing one document."""

    document_id: str
    success: bool
    chunks_created: int = 0
    chunks_failed: int = 0
    error: Optional[str] = None


__all__ = [
    "ChatAnswer",
    "ChatUsage",
    "Chunk",
    "ChunkDraft",
    "ConversationTurn",
    "Course",
    "Document",
    "DocumentFormat",
    "DocumentStatus",
    "ExtractionFailure",
    "ExtractionOutcome",
    "ExtractionResult",
    "GroundedPrompt",
    "ProcessingResult",
    "PromptVariant",
    "ReferencedDocument",
    "SimilarityResult",
    "StoredMessage",
]
