# paper_chat/exceptions.py
"""Exceptions raised by the inference engine and its collaborators."""

from __future__ import annotations

from paper_chat.models.enums import OutcomeKind

# Substrings an on-device runtime uses when a prompt overflows its window
_CAPACITY_MARKERS = (
    "quotaexceedederror",
    "quota exceeded",
    "input is too large",
    "quota",
)


class PaperChatError(Exception):
    """Base class for engine errors."""


class CapacityExceededError(PaperChatError):
    """The model rejected the prompt because it exceeds the session's input quota."""


class SessionNotFound(PaperChatError):
    """No live session is registered for a context id."""

    def __init__(self, context_id: str):
        super().__init__(f"No session registered for context: {context_id}")
        self.context_id = context_id


class NoRelevantExcerpts(PaperChatError):
    """Retrieval returned nothing usable for the question."""


def classify_generation_error(error: BaseException) -> OutcomeKind:
    """Map an exception raised during generation to an outcome tag.

    Runtimes that do not raise ``CapacityExceededError`` are recognised by
    their error text; this is the only place error messages are inspected.
    """
    if isinstance(error, CapacityExceededError):
        return OutcomeKind.CAPACITY_EXCEEDED
    text = f"{type(error).__name__} {error}".lower()
    if any(marker in text for marker in _CAPACITY_MARKERS):
        return OutcomeKind.CAPACITY_EXCEEDED
    return OutcomeKind.FATAL
