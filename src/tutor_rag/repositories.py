"""Ports for the relational store, message log and byte source, with simple adapters."""
from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import httpx

from .models import Course, Document, DocumentFormat, DocumentStatus, StoredMessage

LOGGER = logging.getLogger(__name__)


class DocumentRepository(Protocol):
    """Relational metadata for courses and their documents."""

    def get_course(self, course_id: str) -> Optional[Course]: ...

    def get_document(self, document_id: str) -> Optional[Document]: ...

    def find_unprocessed(self, course_id: str) -> List[Document]: ...

    def processed_document_ids(self, course_id: str) -> List[str]: ...

    def update_extraction_metadata(
        self,
        document_id: str,
        *,
        document_format: DocumentFormat,
        file_size: int,
        page_count: Optional[int],
    ) -> None: ...

    def mark_processed(self, document_id: str) -> None: ...

    def mark_failed(self, document_id: str, error: str) -> None: ...


class MessageStore(Protocol):
    """Read side of the append-only per-session message log."""

    def list_messages(self, session_id: str) -> List[StoredMessage]:
        """Return every message of the session, oldest first."""
        ...


class ByteSource(Protocol):
    async def fetch_bytes(self, locator: str) -> Tuple[bytes, Optional[str]]:
        """Resolve ``locator`` to raw bytes and the declared content type."""
        ...


class InMemoryDocumentRepository:
    """Dictionary-backed repository used for tests and local runs."""

    def __init__(
        self,
        courses: Sequence[Course] = (),
        documents: Sequence[Document] = (),
    ) -> None:
        self._lock = threading.Lock()
        self._courses: Dict[str, Course] = {course.id: course for course in courses}
        self._documents: Dict[str, Document] = {document.id: document for document in documents}

    def add_course(self, course: Course) -> None:
        with self._lock:
            self._courses[course.id] = course

    def add_document(self, document: Document) -> None:
        with self._lock:
            self._documents[document.id] = document

    def get_course(self, course_id: str) -> Optional[Course]:
        return self._courses.get(course_id)

    def get_document(self, document_id: str) -> Optional[Document]:
        return self._documents.get(document_id)

    def find_unprocessed(self, course_id: str) -> List[Document]:
        with self._lock:
            return [
                document
                for document in self._documents.values()
                if document.course_id == course_id
                and document.source_url
                and document.status is not DocumentStatus.PROCESSED
            ]

    def processed_document_ids(self, course_id: str) -> List[str]:
        with self._lock:
            return [
                document.id
                for document in self._documents.values()
                if document.course_id == course_id and document.status is DocumentStatus.PROCESSED
            ]

    def _require(self, document_id: str) -> Document:
        document = self._documents.get(document_id)
        if document is None:
            raise KeyError(f"Unknown document: {document_id}")
        return document

    def update_extraction_metadata(
        self,
        document_id: str,
        *,
        document_format: DocumentFormat,
        file_size: int,
        page_count: Optional[int],
    ) -> None:
        with self._lock:
            document = self._require(document_id)
            document.format = document_format
            document.file_size = file_size
            document.page_count = page_count
            document.error = None

    def mark_processed(self, document_id: str) -> None:
        with self._lock:
            document = self._require(document_id)
            document.status = DocumentStatus.PROCESSED
            document.error = None

    def mark_failed(self, document_id: str, error: str) -> None:
        with self._lock:
            document = self._require(document_id)
            document.status = DocumentStatus.FAILED
            document.error = error


class InMemoryMessageStore:
    def __init__(self) -> None:
        self._messages: Dict[str, List[StoredMessage]] = {}

    def append(self, session_id: str, message: StoredMessage) -> None:
        self._messages.setdefault(session_id, []).append(message)

    def list_messages(self, session_id: str) -> List[StoredMessage]:
        return sorted(self._messages.get(session_id, []), key=lambda message: message.created_at)


class HttpByteSource:
    """Fetch document bytes over HTTP(S)."""

    def __init__(
        self,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        max_bytes: int = 50 * 1024 * 1024,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self.max_bytes = max_bytes

    async def fetch_bytes(self, locator: str) -> Tuple[bytes, Optional[str]]:
        if self._client is not None:
            return await self._fetch(self._client, locator)
        async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
            return await self._fetch(client, locator)

    async def _fetch(self, client: httpx.AsyncClient, locator: str) -> Tuple[bytes, Optional[str]]:
        async with client.stream("GET", locator) as response:
            response.raise_for_status()
            declared = response.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > self.max_bytes:
                raise ValueError(f"Document at {locator} declares {declared} bytes, limit is {self.max_bytes}")
            buffer = bytearray()
            async for piece in response.aiter_bytes():
                buffer.extend(piece)
                if len(buffer) > self.max_bytes:
                    raise ValueError(f"Document at {locator} exceeds {self.max_bytes} bytes")
            content_type = response.headers.get("content-type")
        LOGGER.debug("Fetched %s bytes from %s", len(buffer), locator)
        return bytes(buffer), content_type


class StaticByteSource:
    """Serve pre-registered payloads by locator."""

    def __init__(self, payloads: Optional[Dict[str, Tuple[bytes, Optional[str]]]] = None) -> None:
        self._payloads = dict(payloads or {})

    def add(self, locator: str, data: bytes, content_type: Optional[str] = None) -> None:
        self._payloads[locator] = (data, content_type)

    async def fetch_bytes(self, locator: str) -> Tuple[bytes, Optional[str]]:
        try:
            return self._payloads[locator]
        except KeyError as exc:
            raise FileNotFoundError(locator) from exc


__all__ = [
    "ByteSource",
    "DocumentRepository",
    "HttpByteSource",
    "InMemoryDocumentRepository",
    "InMemoryMessageStore",
    "MessageStore",
    "StaticByteSource",
]
