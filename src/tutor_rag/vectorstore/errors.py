"""Common exceptions for vector store integrations."""
from __future__ import annotations

from tutor_rag.errors import TutorRAGError


class VectorStoreError(TutorRAGError):
    """Raised when the vector store backend cannot be initialised or written."""
