"""Chat-completion clients."""
from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Iterable, List, Optional

import openai

from .config import Settings
from .errors import ChatServiceError, FailureKind
from .models import ChatUsage
from .openai_support import classify_openai_error, make_async_client
from .telemetry import emit_chat_event

LOGGER = logging.getLogger(__name__)

DEFAULT_STUB_RESPONSE = "The assistant model is not configured right now. Please try again later."

Message = Dict[str, str]


@dataclass(slots=True)
class ChatCompletion:
    content: str
    model: str
    usage: ChatUsage


class ChatCompletionClient(ABC):
    """Common interface exposed by chat-completion implementations."""

    model_name: str = "unknown"

    @abstractmethod
    async def complete(
        self,
        messages: List[Message],
        *,
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ) -> ChatCompletion:
        """Return the assistant reply or raise :class:`ChatServiceError`."""

    async def complete_with_timeout(
        self,
        messages: List[Message],
        *,
        timeout: float,
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ) -> ChatCompletion:
        """Run :meth:`complete` bounded by ``timeout``; a timeout counts as transient."""

        started = time.perf_counter()
        try:
            completion = await asyncio.wait_for(
                self.complete(messages, max_tokens=max_tokens, temperature=temperature),
                timeout=timeout,
            )
        except asyncio.TimeoutError as error:
            failure = ChatServiceError(
                f"Chat completion timed out after {timeout:.1f}s",
                kind=FailureKind.TRANSIENT,
                cause=error,
            )
            emit_chat_event(
                model=self.model_name,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                error=failure,
            )
            raise failure from error
        except ChatServiceError as error:
            emit_chat_event(
                model=self.model_name,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                error=error,
            )
            raise

        emit_chat_event(
            model=completion.model,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            prompt_tokens=completion.usage.prompt_tokens,
            completion_tokens=completion.usage.completion_tokens,
        )
        return completion


class OpenAIChatClient(ChatCompletionClient):
    """Client for the OpenAI chat completions endpoint."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        *,
        client: Any | None = None,
        api_key: str | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.model_name = model
        self._client = client
        self._api_key = api_key
        self._timeout = timeout

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = make_async_client(self._api_key, timeout=self._timeout)
        return self._client

    async def complete(
        self,
        messages: List[Message],
        *,
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ) -> ChatCompletion:
        try:
            response = await self._get_client().chat.completions.create(
                model=self.model_name,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.OpenAIError as error:
            kind, status_code = classify_openai_error(error)
            raise ChatServiceError(
                f"Chat completion failed: {error}",
                kind=kind,
                status_code=status_code,
                cause=error,
            ) from error

        if not response.choices:
            raise ChatServiceError("Chat completion returned no choices", kind=FailureKind.TRANSIENT)
        usage = response.usage
        return ChatCompletion(
            content=response.choices[0].message.content or "",
            model=getattr(response, "model", None) or self.model_name,
            usage=ChatUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
            ),
        )


class StubChatClient(ChatCompletionClient):
    """Offline chat client returning scripted or canned replies.

    Scripted responses are consumed in order; once exhausted the default
    message is returned. Every call's messages are kept in ``calls``.
    """

    def __init__(
        self,
        message: str = DEFAULT_STUB_RESPONSE,
        *,
        responses: Optional[Iterable[str]] = None,
    ) -> None:
        self.model_name = "stub"
        self._message = message
        self._responses: Deque[str] = deque(responses or [])
        self.calls: List[List[Message]] = []

    async def complete(
        self,
        messages: List[Message],
        *,
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ) -> ChatCompletion:
        self.calls.append(list(messages))
        content = self._responses.popleft() if self._responses else self._message
        prompt_tokens = sum(len(message.get("content", "")) for message in messages) // 4
        completion_tokens = len(content) // 4
        return ChatCompletion(
            content=content,
            model=self.model_name,
            usage=ChatUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )


def build_chat_client(settings: Settings) -> ChatCompletionClient:
    """Instantiate the chat client named by ``CHAT_BACKEND``."""

    if settings.chat_backend == "openai":
        return OpenAIChatClient(settings.chat_model, timeout=settings.chat_timeout_seconds)
    if settings.chat_backend == "stub":
        return StubChatClient()
    raise ValueError(f"Unsupported CHAT_BACKEND: {settings.chat_backend!r}")


__all__ = [
    "ChatCompletion",
    "ChatCompletionClient",
    "DEFAULT_STUB_RESPONSE",
    "OpenAIChatClient",
    "StubChatClient",
    "build_chat_client",
]
