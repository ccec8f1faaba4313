# paper_chat/prompts.py
"""
Prompts and response schema for paper chat sessions.

The system prompt carries the base instructions only; retrieved excerpts go
into each user prompt so they do not consume the session's seed budget.
"""

from __future__ import annotations

from typing import Any

from paper_chat.config import DEFAULT_OUTPUT_LANGUAGE

# Prefix joining the base instructions and the rolling summary in one system message
SUMMARY_PREFIX = "\n\nPrevious conversation summary: "

ANSWER_FIELD_DESCRIPTION = """Your conversational response to the user's question.
Be friendly and helpful like a supportive colleague. Explain complex concepts in simple, everyday language avoiding unnecessary jargon.
Keep responses concise but detailed enough to answer the user's question.

FOR ALL MATH USE LATEX
- Use $expr$ for inline math, $$expr$$ for display equations

Use markdown formatting to make your response easier to read.
Reference specific sections when used in producing the answer. Remember conversation context for coherent follow-ups."""

CHAT_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "answer": {"type": "string", "description": ANSWER_FIELD_DESCRIPTION},
        "sources": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Hierarchical citations actually used (e.g., 'Section: Methods > Data Collection > P 3')",
        },
    },
    "required": ["answer", "sources"],
}

RESPONSE_FORMAT_INSTRUCTIONS = """Response Format:
You will respond with a JSON object containing:
- "answer": Your conversational response (see schema for formatting guidelines)
- "sources": An array of citations you actually used (use the EXACT hierarchical format from the context, e.g., "Section: Methods > Data Collection > P 3")

Only include sources you actually referenced. If you didn't use specific sources, provide an empty array."""


def build_chat_system_prompt(
    paper_title: str,
    language: str | None = None,
    persona: str | None = None,
    purpose: str | None = None,
) -> str:
    """Build the base system instructions for a paper chat session."""
    sections = [
        "You are a friendly research assistant helping a reader understand an academic paper.",
        "Task: Answer questions about the research paper based on the provided context.",
    ]
    if persona:
        sections.append(f"The reader is a {persona}.")
    if purpose:
        sections.append(f"The reader's goal: {purpose}.")
    sections.extend(
        [
            "If the context doesn't contain enough information, say so honestly.",
            "Write all mathematics in LaTeX.",
            f"Respond in language: {language or DEFAULT_OUTPUT_LANGUAGE}.",
            RESPONSE_FORMAT_INSTRUCTIONS,
            f"Paper title: {paper_title}",
        ]
    )
    return "\n\n".join(sections)


def build_context_prompt(rendered_excerpts: str, question: str) -> str:
    """Wrap the rendered excerpt block and the user's question into one prompt."""
    return f"Context from the paper:\n{rendered_excerpts}\n\nUser question: {question}"


def build_seed_system_message(system_prompt: str, summary: str | None) -> str:
    """Combine base instructions with the rolling summary (sessions accept one system message)."""
    if summary:
        return f"{system_prompt}{SUMMARY_PREFIX}{summary}"
    return system_prompt
