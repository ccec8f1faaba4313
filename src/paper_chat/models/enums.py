# paper_chat/models/enums.py
"""Enums shared across the engine."""

from __future__ import annotations

from enum import Enum


class MessageRole(str, Enum):
    """Roles a conversation message can carry."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class OutcomeKind(str, Enum):
    """Tag of a turn or generation attempt result.

    SUCCESS and MALFORMED both deliver an answer; MALFORMED means the final
    JSON could not be parsed and sources defaulted to empty. NO_CONTEXT means
    retrieval found nothing to answer from.
    """

    SUCCESS = "success"
    MALFORMED = "malformed"
    BUDGET_EXHAUSTED = "budget_exhausted"
    TIMEOUT = "timeout"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    STALE_TARGET = "stale_target"
    NO_CONTEXT = "no_context"
    FATAL = "fatal"

    @property
    def delivers_answer(self) -> bool:
        return self in (OutcomeKind.SUCCESS, OutcomeKind.MALFORMED)


class DegradationStep(str, Enum):
    """Steps the budget planner may take to make a prompt fit."""

    SUMMARIZE = "summarize"
    TRIM = "trim"
    FALLBACK = "fallback"
