# paper_chat/storage.py
"""In-memory ``ConversationStore`` for tests, demos and single-process use."""

from __future__ import annotations

import logging

from paper_chat.models import ConversationState, Message

logger = logging.getLogger(__name__)


class InMemoryConversationStore:
    """Keeps history and conversation state per thread in plain dicts."""

    def __init__(self) -> None:
        self._states: dict[str, ConversationState] = {}
        self._histories: dict[str, list[Message]] = {}

    async def get_conversation_state(self, thread_id: str) -> ConversationState | None:
        state = self._states.get(thread_id)
        return state.model_copy(deep=True) if state else None

    async def save_conversation_state(self, thread_id: str, state: ConversationState) -> None:
        self._states[thread_id] = state.model_copy(deep=True)
        logger.debug(f"Saved conversation state for {thread_id} (summary_count={state.summary_count})")

    async def get_history(self, thread_id: str) -> list[Message]:
        return list(self._histories.get(thread_id, []))

    async def append_messages(self, thread_id: str, messages: list[Message]) -> None:
        self._histories.setdefault(thread_id, []).extend(messages)

    def list_threads(self) -> list[str]:
        return sorted(set(self._states) | set(self._histories))
