"""Exception hierarchy shared across the ingestion and retrieval paths."""
from __future__ import annotations

from enum import Enum


class TutorRAGError(RuntimeError):
    """Base class for every error raised by this package."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.__cause__ = cause


class ExtractionError(TutorRAGError):
    """Raised when a payload cannot be turned into usable text."""

    def __init__(
        self,
        message: str,
        *,
        reason: str = "corrupt",
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        # one of "unsupported", "corrupt", "empty"
        self.reason = reason


class ChunkingConfigError(TutorRAGError, ValueError):
    """Raised at construction time for impossible chunk/overlap sizes."""


class FailureKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"

    @property
    def retryable(self) -> bool:
        return self is FailureKind.TRANSIENT


class ServiceCallError(TutorRAGError):
    """A remote model call failed; ``kind`` tells callers whether to retry."""

    def __init__(
        self,
        message: str,
        *,
        kind: FailureKind = FailureKind.PERMANENT,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.kind = kind
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        return self.kind.retryable


class EmbeddingServiceError(ServiceCallError):
    """Raised by embedding clients."""


class ChatServiceError(ServiceCallError):
    """Raised by chat-completion clients."""


def is_transient(error: BaseException) -> bool:
    """Return ``True`` when ``error`` is a retryable service failure."""

    return isinstance(error, ServiceCallError) and error.transient


def classify_status(status_code: int | None) -> FailureKind:
    """Map an HTTP-style status code onto a failure kind."""

    if status_code is None:
        return FailureKind.TRANSIENT
    if status_code in {408, 409, 429} or status_code >= 500:
        return FailureKind.TRANSIENT
    return FailureKind.PERMANENT


__all__ = [
    "ChatServiceError",
    "ChunkingConfigError",
    "EmbeddingServiceError",
    "ExtractionError",
    "FailureKind",
    "ServiceCallError",
    "TutorRAGError",
    "classify_status",
    "is_transient",
]
