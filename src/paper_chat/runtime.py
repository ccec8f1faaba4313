# paper_chat/runtime.py
"""
Protocols for the collaborators the engine consumes.

The engine never talks to a concrete model, database or retriever; it is
handed objects satisfying these protocols.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Protocol, runtime_checkable

from paper_chat.config import SessionOptions
from paper_chat.models import ContextExcerpt, ConversationState, Message, SourceRef


@runtime_checkable
class SessionHandle(Protocol):
    """Opaque live model session. Usage counters are read live."""

    @property
    def input_usage(self) -> int: ...

    @property
    def input_quota(self) -> int: ...


class ModelRuntime(Protocol):
    """On-device language model runtime."""

    async def create_session(
        self,
        options: SessionOptions,
        initial_prompts: list[dict[str, str]] | None = None,
    ) -> SessionHandle:
        """Create a session seeded with ``initial_prompts`` (role/content pairs)."""
        ...

    async def measure_input_tokens(self, session: SessionHandle, text: str) -> int:
        """Return how many input tokens ``text`` would consume in ``session``."""
        ...

    def stream_generate(
        self,
        session: SessionHandle,
        prompt: str,
        json_schema: dict[str, Any],
    ) -> AsyncIterator[str]:
        """Stream text fragments of a schema-constrained response."""
        ...

    async def destroy_session(self, session: SessionHandle) -> None: ...


class Summarizer(Protocol):
    """Condenses conversation messages into a short text."""

    async def summarize(self, messages: list[Message], topic_label: str) -> str | None: ...


class Retrieval(Protocol):
    """Ranked excerpt retrieval for a stored document."""

    async def get_relevant_excerpts(self, document_id: str, query: str, limit: int) -> list[ContextExcerpt]: ...


class ConversationStore(Protocol):
    """Durable per-thread storage for history and rolling conversation state."""

    async def get_conversation_state(self, thread_id: str) -> ConversationState | None: ...

    async def save_conversation_state(self, thread_id: str, state: ConversationState) -> None: ...

    async def get_history(self, thread_id: str) -> list[Message]: ...

    async def append_messages(self, thread_id: str, messages: list[Message]) -> None: ...


class TurnEventChannel(Protocol):
    """Destination for the deltas and completion of one turn.

    Emission is fire-and-forget: implementations must tolerate the receiving
    endpoint having gone away. ``is_open`` reports whether it still exists.
    """

    async def is_open(self) -> bool: ...

    async def emit_delta(self, text: str) -> None: ...

    async def emit_turn_complete(
        self,
        answer: str,
        sources: list[str],
        source_info: list[SourceRef] | None = None,
    ) -> None: ...
