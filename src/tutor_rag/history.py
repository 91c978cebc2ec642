"""Token-bounded window over a session's recent messages."""
from __future__ import annotations

import logging
from typing import List

from .ingest.chunking import estimate_tokens
from .models import ConversationTurn
from .repositories import MessageStore

LOGGER = logging.getLogger(__name__)


class ConversationHistoryTrimmer:
    def __init__(self, store: MessageStore, token_budget: int = 2000) -> None:
        self.store = store
        self.token_budget = token_budget

    def trim(self, session_id: str) -> List[ConversationTurn]:
        """Return the newest messages that fit the budget, oldest first.

        Walks the log backwards and stops at the first message that would
        overflow, so the result is always a contiguous recent suffix.
        """

        messages = self.store.list_messages(session_id)
        accepted: List[ConversationTurn] = []
        used_tokens = 0
        for message in reversed(messages):
            tokens = estimate_tokens(message.content)
            if used_tokens + tokens > self.token_budget:
                break
            accepted.append(
                ConversationTurn(
                    role="user" if message.is_from_user else "assistant",
                    content=message.content,
                )
            )
            used_tokens += tokens
        accepted.reverse()
        LOGGER.debug(
            "Kept %s of %s messages (%s tokens) for session %s",
            len(accepted),
            len(messages),
            used_tokens,
            session_id,
        )
        return accepted


__all__ = ["ConversationHistoryTrimmer"]
