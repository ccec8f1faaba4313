# paper_chat/models/conversation_state.py
"""Rolling conversation memory persisted per thread."""

from __future__ import annotations

from pydantic import BaseModel, Field

from paper_chat.models.message import Message


class ConversationState(BaseModel):
    """Summary of older turns plus the verbatim tail of the history.

    ``last_summarized_index`` points at the last history entry already folded
    into ``summary`` (-1 when nothing has been folded) and never decreases.
    ``summary_count`` counts merges since the last re-compaction.
    """

    summary: str | None = None
    recent_messages: list[Message] = Field(default_factory=list)
    last_summarized_index: int = -1
    summary_count: int = 0

    @classmethod
    def empty(cls) -> ConversationState:
        return cls()

    @property
    def has_summary(self) -> bool:
        return bool(self.summary)
