# paper_chat/stream_decoder.py
"""
Incremental decoder for schema-constrained ``{"answer": ..., "sources": [...]}`` output.

The model streams raw JSON text. ``StreamDecoder.feed`` returns only the part
of the ``answer`` string that can no longer change once unescaped:

- the last ``len('", "sources')`` characters are held back, since they might
  be the start of the boundary into the ``sources`` field;
- a single trailing backslash is held back so a two-character escape is never
  split across deltas.

Once the boundary appears the answer is final and no further text is
revealed. ``finish`` parses the whole buffer to recover ``sources``.
"""

from __future__ import annotations

import json
import logging

from pydantic import BaseModel, Field

from paper_chat.math_spans import MathSpanProtector

logger = logging.getLogger(__name__)

ANSWER_KEY = '"answer"'
SOURCES_BOUNDARY = '", "sources'
LOOKAHEAD_SIZE = len(SOURCES_BOUNDARY)


class DecodedAnswer(BaseModel):
    """Final decoded payload of one generation."""

    answer: str
    sources: list[str] = Field(default_factory=list)
    final_delta: str = Field(default="", description="Text revealed by finish() itself")
    malformed: bool = Field(default=False, description="Final JSON could not be parsed")


class StreamDecoder:
    """Reveals the safely decodable prefix of the ``answer`` field."""

    def __init__(self, protector: MathSpanProtector | None = None) -> None:
        self._protector = protector or MathSpanProtector()
        self._buffer = ""
        self._revealed = ""
        self._final_answer: str | None = None

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def revealed(self) -> str:
        """Everything returned by ``feed`` so far."""
        return self._revealed

    @property
    def boundary_seen(self) -> bool:
        return self._final_answer is not None

    def _raw_answer(self) -> str | None:
        """Raw (still escaped) answer text after the opening quote, if located."""
        key_index = self._buffer.find(ANSWER_KEY)
        if key_index == -1:
            return None
        colon_index = self._buffer.find(":", key_index + len(ANSWER_KEY))
        if colon_index == -1:
            return None
        quote_index = self._buffer.find('"', colon_index + 1)
        if quote_index == -1:
            return None
        return self._buffer[quote_index + 1 :]

    def _reveal(self, text: str) -> str:
        delta = text[len(self._revealed) :]
        if delta:
            self._revealed = text
        return delta

    def feed(self, fragment: str) -> str:
        """Append ``fragment`` and return the newly displayable delta (may be empty)."""
        self._buffer += fragment
        if self.boundary_seen:
            return ""

        raw_answer = self._raw_answer()
        if raw_answer is None:
            return ""

        boundary_index = raw_answer.find(SOURCES_BOUNDARY)
        if boundary_index != -1:
            self._final_answer = self._protector.protect(raw_answer[:boundary_index])
            logger.debug("Sources boundary reached; answer finalised")
            return self._reveal(self._final_answer)

        if len(raw_answer) <= LOOKAHEAD_SIZE:
            return ""

        visible = raw_answer[:-LOOKAHEAD_SIZE]
        if visible.endswith("\\"):
            visible = visible[:-1]
        return self._reveal(self._protector.protect(visible))

    def finish(self) -> DecodedAnswer:
        """Parse the complete buffer once the stream has ended.

        A parse failure is recovered locally: the streamed text stands and
        sources default to empty.
        """
        try:
            parsed = json.loads(self._buffer)
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to parse final JSON ({e}); keeping streamed answer")
            answer = self._final_answer if self._final_answer is not None else self._revealed
            return DecodedAnswer(answer=answer, malformed=True)

        if not isinstance(parsed, dict):
            logger.warning("Final JSON is not an object; keeping streamed answer")
            answer = self._final_answer if self._final_answer is not None else self._revealed
            return DecodedAnswer(answer=answer, malformed=True)

        raw_sources = parsed.get("sources") or []
        sources = [str(s) for s in raw_sources] if isinstance(raw_sources, list) else []

        if self._final_answer is not None:
            return DecodedAnswer(answer=self._final_answer, sources=sources)

        # Boundary never seen: the parsed value is already unescaped
        answer = parsed.get("answer")
        answer = answer if isinstance(answer, str) else self._revealed
        final_delta = answer[len(self._revealed) :] if answer.startswith(self._revealed) else ""
        if final_delta:
            self._revealed = answer
        return DecodedAnswer(answer=answer, sources=sources, final_delta=final_delta)
