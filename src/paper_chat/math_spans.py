# paper_chat/math_spans.py
"""
Math span protection for streamed JSON text.

Answers arrive as the raw contents of a JSON string literal, so every
backslash inside LaTeX is doubled (``\\\\frac``). A generic unescape pass
would read ``\\n`` in ``\\nu`` as a newline, so math spans are lifted out
first, the prose is unescaped, and each span is unescaped exactly once as it
is put back.

Usage::

    protector = MathSpanProtector()
    extracted = protector.extract(raw)
    body = unescape_json_string(extracted.body)
    text = protector.rehydrate(body, extracted.spans)

    # or, in one step
    text = protector.protect(raw)
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

# Sentinel shielding doubled backslashes during unescaping
_BACKSLASH_SENTINEL = "\x00"

PLACEHOLDER_TEMPLATE = "{{{{MATH_{index}}}}}"

# Display forms are listed before inline forms so "$$x$$" is never split by "$...$".
# Bracket delimiters accept one or two backslashes to cover JSON-escaped input.
DISPLAY_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\$\$[\s\S]+?\$\$"),
    re.compile(r"\\{1,2}\[[\s\S]+?\\{1,2}\]"),
)
INLINE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\$[^$]+?\$"),
    re.compile(r"\\{1,2}\([\s\S]+?\\{1,2}\)"),
)


def placeholder(index: int) -> str:
    """Return the positional placeholder for span ``index``."""
    return PLACEHOLDER_TEMPLATE.format(index=index)


def unescape_json_string(text: str) -> str:
    """Convert literal ``\\n`` and ``\\"`` escapes into real characters.

    Doubled backslashes are swapped for a sentinel first so ``\\\\n`` stays a
    backslash followed by ``n``. Only call this on text whose math spans have
    already been extracted.
    """
    return (
        text.replace("\\\\", _BACKSLASH_SENTINEL)
        .replace("\\n", "\n")
        .replace('\\"', '"')
        .replace(_BACKSLASH_SENTINEL, "\\")
    )


class ExtractedMath(BaseModel):
    """Text with math replaced by placeholders, plus the verbatim spans."""

    body: str
    spans: list[str] = Field(default_factory=list)


class MathSpanProtector:
    """Lifts math spans out of text and puts them back after unescaping."""

    def __init__(self, patterns: tuple[re.Pattern[str], ...] | None = None) -> None:
        self._patterns = patterns or DISPLAY_PATTERNS + INLINE_PATTERNS

    def extract(self, text: str) -> ExtractedMath:
        spans: list[str] = []

        def _stash(match: re.Match[str]) -> str:
            spans.append(match.group(0))
            return placeholder(len(spans) - 1)

        body = text
        for pattern in self._patterns:
            body = pattern.sub(_stash, body)
        return ExtractedMath(body=body, spans=spans)

    def rehydrate(self, body: str, spans: list[str]) -> str:
        result = body
        # Later spans may enclose earlier placeholders, so restore newest first
        for index in reversed(range(len(spans))):
            result = result.replace(placeholder(index), unescape_json_string(spans[index]))
        return result

    def protect(self, raw: str) -> str:
        """Extract, unescape the prose, then rehydrate: raw JSON text to display text."""
        extracted = self.extract(raw)
        return self.rehydrate(unescape_json_string(extracted.body), extracted.spans)
