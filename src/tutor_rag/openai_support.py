"""Shared helpers for the OpenAI-backed embedding and chat clients."""
from __future__ import annotations

import openai
from openai import AsyncOpenAI

from .errors import FailureKind, classify_status

_TRANSIENT_ERRORS = (
    openai.APIConnectionError,  # includes APITimeoutError
    openai.RateLimitError,
    openai.InternalServerError,
)


def classify_openai_error(error: BaseException) -> tuple[FailureKind, int | None]:
    """Return the failure kind and HTTP status (when known) for an SDK error."""

    status_code = getattr(error, "status_code", None)
    if isinstance(error, _TRANSIENT_ERRORS):
        return FailureKind.TRANSIENT, status_code
    if isinstance(error, openai.APIStatusError):
        return classify_status(status_code), status_code
    return FailureKind.PERMANENT, status_code


def make_async_client(api_key: str | None = None, *, timeout: float = 60.0) -> AsyncOpenAI:
    # retries are owned by the callers, so the SDK's own loop is disabled
    return AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)
