# paper_chat/models/message.py
"""Conversation message and source reference models."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from paper_chat.models.enums import MessageRole


class SourceRef(BaseModel):
    """Locator for a cited section, used for scroll-to-source."""

    model_config = ConfigDict(frozen=True)

    text: str
    section_heading: str
    css_selector: str | None = None
    element_id: str | None = None
    x_path: str | None = None
    start_char: int | None = None
    end_char: int | None = None


class Message(BaseModel):
    """One immutable entry of a thread's history."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    sources: list[str] | None = None
    source_info: list[SourceRef] | None = None

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(
        cls,
        content: str,
        sources: list[str] | None = None,
        source_info: list[SourceRef] | None = None,
    ) -> Message:
        return cls(role=MessageRole.ASSISTANT, content=content, sources=sources, source_info=source_info)

    def as_prompt(self) -> dict[str, str]:
        """Return the ``{"role", "content"}`` pair used to seed a session."""
        return {"role": self.role.value, "content": self.content}
