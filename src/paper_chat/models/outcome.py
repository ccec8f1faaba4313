# paper_chat/models/outcome.py
"""Tagged results of generation attempts and whole turns."""

from __future__ import annotations

from pydantic import BaseModel, Field

from paper_chat.models.enums import OutcomeKind
from paper_chat.models.message import SourceRef

# User-visible messages for terminal failures
TIMEOUT_MESSAGE = "Chat request timed out after multiple attempts. Please try again."
CAPACITY_MESSAGE = "Unable to process your question due to context size limitations. Please try a shorter question."
FATAL_MESSAGE = "Sorry, I encountered an error processing your message. Please try again."
NO_EXCERPTS_MESSAGE = "No relevant content found to answer this question."


class AttemptOutcome(BaseModel):
    """Result of one generation attempt inside the retry loops."""

    kind: OutcomeKind
    answer: str = ""
    sources: list[str] = Field(default_factory=list)
    error: str | None = None


class TurnResult(BaseModel):
    """Final result of ``TurnController.process_turn``."""

    kind: OutcomeKind
    answer: str = ""
    sources: list[str] = Field(default_factory=list)
    source_info: list[SourceRef] = Field(default_factory=list)
    timeout_attempts: int = 0
    capacity_attempts: int = 0
    session_reconstructions: int = 0

    @property
    def succeeded(self) -> bool:
        return self.kind.delivers_answer

    @property
    def is_silent(self) -> bool:
        """Stale-target results are never shown to the user."""
        return self.kind == OutcomeKind.STALE_TARGET
