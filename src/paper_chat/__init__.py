# paper_chat/__init__.py
"""
Context-budgeted conversational inference for chatting with research papers.

This package answers questions about a document with an on-device language
model whose input window is small and shared across a conversation:
- Budget planning: fit retrieved excerpts into the session's remaining quota
- Rolling summaries: fold older turns so memory survives session resets
- Streaming: reveal the ``answer`` field of JSON output without corrupting LaTeX
- Retries: bounded timeout and capacity recovery with tagged outcomes
"""

from .budget_planner import ContextBudgetPlanner, PlanResult
from .config import EngineConfig, SessionOptions, configure_logging
from .events import QueueEventChannel, TurnEvent, TurnEventType
from .exceptions import (
    CapacityExceededError,
    NoRelevantExcerpts,
    PaperChatError,
    SessionNotFound,
    classify_generation_error,
)
from .math_spans import MathSpanProtector, unescape_json_string
from .models import (
    ContextExcerpt,
    ConversationState,
    Message,
    MessageRole,
    OutcomeKind,
    SessionMetrics,
    SourceRef,
    TurnResult,
)
from .quota import InputQuotaProbe
from .retry import RetryCoordinator, RetryResult, TurnRequest
from .session_registry import SessionRegistry
from .storage import InMemoryConversationStore
from .stream_decoder import DecodedAnswer, StreamDecoder
from .streaming import CancellationToken, FragmentStream
from .summarizer import ConversationSummarizer
from .turn_controller import RetrievalContext, TurnController

__version__ = "0.1.0"

__all__ = [
    # Entry point
    "TurnController",
    "RetrievalContext",
    # Components
    "ContextBudgetPlanner",
    "PlanResult",
    "ConversationSummarizer",
    "InputQuotaProbe",
    "RetryCoordinator",
    "RetryResult",
    "TurnRequest",
    "SessionRegistry",
    # Streaming
    "CancellationToken",
    "DecodedAnswer",
    "FragmentStream",
    "MathSpanProtector",
    "StreamDecoder",
    "unescape_json_string",
    # Events and storage
    "InMemoryConversationStore",
    "QueueEventChannel",
    "TurnEvent",
    "TurnEventType",
    # Models
    "ContextExcerpt",
    "ConversationState",
    "Message",
    "MessageRole",
    "OutcomeKind",
    "SessionMetrics",
    "SourceRef",
    "TurnResult",
    # Config
    "EngineConfig",
    "SessionOptions",
    "configure_logging",
    # Errors
    "CapacityExceededError",
    "NoRelevantExcerpts",
    "PaperChatError",
    "SessionNotFound",
    "classify_generation_error",
]
