# paper_chat/models/session_metrics.py
"""Derived, never persisted, measurements of a live session."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SessionMetrics(BaseModel):
    """Input token usage of a session relative to its quota."""

    input_usage: int = 0
    input_quota: int = 0
    usage_ratio: float = Field(default=0.0, description="input_usage / input_quota (0 when quota unknown)")

    @classmethod
    def from_counts(cls, input_usage: int | None, input_quota: int | None) -> SessionMetrics:
        usage = input_usage or 0
        quota = input_quota or 0
        return cls(input_usage=usage, input_quota=quota, usage_ratio=usage / quota if quota > 0 else 0.0)

    @property
    def usage_percentage(self) -> float:
        return self.usage_ratio * 100


class BudgetValidation(BaseModel):
    """Result of measuring one candidate prompt against a session."""

    fits: bool
    measured_tokens: int
    available_tokens: int
    quota: int = 0
    estimated: bool = Field(default=False, description="True when the runtime measurement failed")
