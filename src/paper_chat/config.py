# paper_chat/config.py
"""Engine configuration.

Defaults can be overridden through environment variables (a ``.env`` file is
honoured). Every tunable threshold of the inference engine lives on
``EngineConfig`` so callers build it once and pass it down.
"""

from __future__ import annotations

import logging
import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

# Central defaults: can be overridden by environment variables
DEFAULT_FIRST_FRAGMENT_TIMEOUT = float(os.getenv("PAPER_CHAT_FIRST_FRAGMENT_TIMEOUT", "10.0"))
DEFAULT_OUTPUT_LANGUAGE = os.getenv("PAPER_CHAT_OUTPUT_LANGUAGE", "en")
DEFAULT_FALLBACK_INPUT_QUOTA = int(os.getenv("PAPER_CHAT_FALLBACK_INPUT_QUOTA", "1024"))
DEFAULT_LOG_LEVEL = os.getenv("PAPER_CHAT_LOG_LEVEL", "WARNING")

# Languages the on-device model is asked to accept as input
DEFAULT_INPUT_LANGUAGES = ["en", "es", "ja"]


class EngineConfig(BaseModel):
    """Thresholds and retry bounds for one TurnController."""

    # Retry policy
    first_fragment_timeout_s: float = Field(
        default=DEFAULT_FIRST_FRAGMENT_TIMEOUT,
        description="Seconds to wait for the first streamed fragment",
    )
    max_timeout_attempts: int = Field(default=3, description="Total attempts including the first")
    max_capacity_attempts: int = Field(default=3, description="Generation attempts per timeout attempt")
    retry_delay_s: float = Field(default=1.0, description="Pause after a session reconstruction")

    # Budget thresholds
    validation_safety_ratio: float = Field(default=0.8, description="Share of remaining capacity a prompt may use")
    presummarization_ratio: float = Field(default=0.8, description="Share of device quota that triggers pre-summarization")
    session_refresh_ratio: float = Field(default=0.7, description="Usage ratio above which a reused session is rebuilt")
    post_turn_summarization_ratio: float = Field(default=0.8, description="Usage ratio that triggers post-turn summarization")

    # Summarization
    summary_merge_limit: int = Field(default=2, description="Merges allowed before the summary is re-compacted")
    recent_window: int = Field(default=6, description="Raw messages kept verbatim")
    min_history_for_summarization: int = Field(default=3, description="History length that must be exceeded")

    # Excerpt degradation
    max_planning_attempts: int = Field(default=500)
    trim_step: int = Field(default=2, description="Excerpts dropped per trimming attempt")
    fallback_excerpt_count: int = Field(default=2, description="Excerpts kept by the final fallback")

    # Estimation
    chars_per_token: int = Field(default=4)
    fallback_input_quota: int = Field(default=DEFAULT_FALLBACK_INPUT_QUOTA)

    def estimate_tokens(self, text: str) -> int:
        """Rough token estimate used when the runtime cannot measure."""
        return -(-len(text) // self.chars_per_token)


class SessionOptions(BaseModel):
    """Options a model session is created with."""

    expected_inputs: list[dict[str, Any]] = Field(
        default_factory=lambda: [{"type": "text", "languages": list(DEFAULT_INPUT_LANGUAGES)}]
    )
    expected_outputs: list[dict[str, Any]] = Field(
        default_factory=lambda: [{"type": "text", "languages": [DEFAULT_OUTPUT_LANGUAGE]}]
    )
    temperature: float = 0.0
    top_k: int = 1

    @classmethod
    def for_language(cls, language: str | None = None) -> SessionOptions:
        """Build options whose expected output is ``language`` (default from env)."""
        return cls(expected_outputs=[{"type": "text", "languages": [language or DEFAULT_OUTPUT_LANGUAGE]}])


def configure_logging(level: str | int | None = None) -> None:
    """Attach a basic handler and set the package log level."""
    logging.basicConfig(level=logging.WARNING)
    logging.getLogger("paper_chat").setLevel(level or DEFAULT_LOG_LEVEL)
