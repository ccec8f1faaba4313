# paper_chat/models/__init__.py
"""
Core models for the paper chat engine.
"""

from paper_chat.models.conversation_state import ConversationState
from paper_chat.models.enums import DegradationStep, MessageRole, OutcomeKind
from paper_chat.models.excerpt import ContextExcerpt, in_document_order
from paper_chat.models.message import Message, SourceRef
from paper_chat.models.outcome import (
    CAPACITY_MESSAGE,
    FATAL_MESSAGE,
    NO_EXCERPTS_MESSAGE,
    TIMEOUT_MESSAGE,
    AttemptOutcome,
    TurnResult,
)
from paper_chat.models.session_metrics import BudgetValidation, SessionMetrics

__all__ = [
    # Enums
    "DegradationStep",
    "MessageRole",
    "OutcomeKind",
    # Conversation
    "ConversationState",
    "Message",
    "SourceRef",
    # Retrieval
    "ContextExcerpt",
    "in_document_order",
    # Session measurements
    "BudgetValidation",
    "SessionMetrics",
    # Results
    "AttemptOutcome",
    "TurnResult",
    "CAPACITY_MESSAGE",
    "FATAL_MESSAGE",
    "NO_EXCERPTS_MESSAGE",
    "TIMEOUT_MESSAGE",
]
