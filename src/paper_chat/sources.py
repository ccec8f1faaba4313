# paper_chat/sources.py
"""Map citations returned by the model to scroll-to-source locators."""

from __future__ import annotations

import logging
import re

from paper_chat.models import ContextExcerpt, SourceRef

logger = logging.getLogger(__name__)

# "Section: Methods > P 3 > Sentences" -> "Section: Methods"
_PARAGRAPH_SUFFIX = re.compile(r"\s*>\s*P\s+\d+(\s*>\s*Sentences)?$")


def normalize_citation(citation: str) -> str:
    """Strip a trailing paragraph (and sentence group) marker from a citation."""
    return _PARAGRAPH_SUFFIX.sub("", citation.strip())


def source_key(excerpt: ContextExcerpt) -> str:
    return f"Section: {excerpt.section_path}"


def build_source_index(excerpts: list[ContextExcerpt]) -> dict[str, SourceRef]:
    """Index excerpt locators by section citation; the first excerpt per section wins."""
    index: dict[str, SourceRef] = {}
    for excerpt in excerpts:
        key = source_key(excerpt)
        if key in index:
            continue
        heading = excerpt.section_heading or excerpt.section_path.split(">")[-1].strip()
        index[key] = SourceRef(
            text=key,
            section_heading=heading,
            css_selector=excerpt.css_selector,
            element_id=excerpt.element_id,
            x_path=excerpt.x_path,
            start_char=excerpt.start_char,
            end_char=excerpt.end_char,
        )
    return index


def map_sources(citations: list[str], excerpts: list[ContextExcerpt]) -> list[SourceRef]:
    """Resolve each citation to a ``SourceRef``; unknown citations are skipped."""
    index = build_source_index(excerpts)
    refs = [index[key] for key in (normalize_citation(c) for c in citations) if key in index]
    logger.debug(f"Mapped {len(refs)} of {len(citations)} sources")
    return refs
