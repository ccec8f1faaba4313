# paper_chat/models/excerpt.py
"""Retrieved document excerpts."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ContextExcerpt(BaseModel):
    """A retrieved fragment of the paper with its position and heading trail."""

    content: str
    section_path: str = Field(default="Unknown section", description="Heading trail, e.g. 'Methods > Data'")
    document_order_index: int = Field(..., description="Position of the excerpt in the document")
    paragraph_index: int | None = None
    sentence_group_index: int | None = None

    # Locator metadata carried through to cited sources
    section_heading: str | None = None
    css_selector: str | None = None
    element_id: str | None = None
    x_path: str | None = None
    start_char: int | None = None
    end_char: int | None = None

    def citation(self) -> str:
        """Render the bracketed citation header used in prompts."""
        citation = f"[Section: {self.section_path}"
        if self.paragraph_index is not None:
            citation += f" > P {self.paragraph_index + 1}"
            if self.sentence_group_index is not None:
                citation += " > Sentences"
        return citation + "]"

    def render(self) -> str:
        return f"{self.citation()}\n{self.content}"


def in_document_order(excerpts: list[ContextExcerpt]) -> list[ContextExcerpt]:
    """Return excerpts sorted by their position in the document (stable)."""
    return sorted(excerpts, key=lambda excerpt: excerpt.document_order_index)
