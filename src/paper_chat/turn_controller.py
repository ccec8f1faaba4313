# paper_chat/turn_controller.py
"""
TurnController - the single entry point for one user question.

A turn loads the thread's history and rolling state, retrieves excerpts,
acquires the session for that thread on the document, hands off to the RetryCoordinator, and
publishes the outcome on the event channel. History is appended only after a
turn delivers an answer; terminal failures leave history and state untouched.
"""

from __future__ import annotations

import asyncio
import logging
import weakref

from pydantic import BaseModel, Field

from paper_chat.budget_planner import ContextBudgetPlanner
from paper_chat.config import EngineConfig, SessionOptions
from paper_chat.exceptions import NoRelevantExcerpts
from paper_chat.math_spans import MathSpanProtector
from paper_chat.models import (
    FATAL_MESSAGE,
    NO_EXCERPTS_MESSAGE,
    ContextExcerpt,
    ConversationState,
    Message,
    OutcomeKind,
    SourceRef,
    TurnResult,
)
from paper_chat.prompts import build_chat_system_prompt
from paper_chat.quota import InputQuotaProbe
from paper_chat.retry import RetryCoordinator, RetryResult, SleepFn, TurnRequest
from paper_chat.runtime import (
    ConversationStore,
    ModelRuntime,
    Retrieval,
    SessionHandle,
    Summarizer,
    TurnEventChannel,
)
from paper_chat.session_registry import SessionRegistry
from paper_chat.sources import map_sources
from paper_chat.summarizer import ConversationSummarizer

logger = logging.getLogger(__name__)


class RetrievalContext(BaseModel):
    """What the turn is about: the document, its label and how to ask."""

    document_id: str
    topic_label: str = Field(..., description="Paper title, passed to the summarizer and system prompt")
    excerpt_limit: int | None = Field(default=None, description="Excerpts to retrieve; sized from the quota when unset")
    language: str | None = None
    persona: str | None = None
    purpose: str | None = None
    system_prompt: str | None = Field(default=None, description="Overrides the generated system prompt")

    def context_id_for(self, thread_id: str) -> str:
        """One context, and so one live session, per conversation thread on a document."""
        return f"chat-{self.document_id}-{thread_id}"


class TurnController:
    """
    Processes conversational turns against a document.

    Examples:
        ```python
        controller = TurnController(runtime, registry, retrieval, summarizer, store)
        channel = QueueEventChannel()
        result = await controller.process_turn(
            "thread-1",
            "What dataset was used?",
            RetrievalContext(document_id="paper-1", topic_label="Attention Is All You Need"),
            channel,
        )
        ```
    """

    def __init__(
        self,
        runtime: ModelRuntime,
        registry: SessionRegistry,
        retrieval: Retrieval,
        summarizer: Summarizer,
        store: ConversationStore,
        config: EngineConfig | None = None,
        quota_probe: InputQuotaProbe | None = None,
        protector: MathSpanProtector | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._config = config or EngineConfig()
        self._registry = registry
        self._retrieval = retrieval
        self._store = store
        self._quota_probe = quota_probe or InputQuotaProbe(runtime, self._config)
        self.summarizer = ConversationSummarizer(summarizer, store, registry, self._quota_probe, self._config)
        self.planner = ContextBudgetPlanner(runtime, registry, self.summarizer, self._config)
        self.coordinator = RetryCoordinator(runtime, registry, self.planner, self._config, protector, sleep)
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, context_id: str) -> asyncio.Lock:
        # Entries vanish once no turn holds or awaits the lock
        lock = self._locks.get(context_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[context_id] = lock
        return lock

    async def process_turn(
        self,
        thread_id: str,
        question: str,
        retrieval_context: RetrievalContext,
        channel: TurnEventChannel,
    ) -> TurnResult:
        """Answer ``question`` on ``thread_id``, streaming progress to ``channel``.

        Never raises for model or collaborator failures; the returned
        ``TurnResult`` carries the outcome tag and the text shown to the user.
        """
        context_id = retrieval_context.context_id_for(thread_id)
        async with self._lock_for(context_id):
            try:
                return await self._process(context_id, thread_id, question, retrieval_context, channel)
            except NoRelevantExcerpts:
                logger.warning(f"No relevant excerpts for {retrieval_context.document_id}")
                await self._emit_complete(channel, NO_EXCERPTS_MESSAGE, [])
                return TurnResult(kind=OutcomeKind.NO_CONTEXT, answer=NO_EXCERPTS_MESSAGE)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error processing turn for {thread_id}: {e}", exc_info=True)
                await self._emit_complete(channel, FATAL_MESSAGE, [])
                return TurnResult(kind=OutcomeKind.FATAL, answer=FATAL_MESSAGE)

    async def _process(
        self,
        context_id: str,
        thread_id: str,
        question: str,
        context: RetrievalContext,
        channel: TurnEventChannel,
    ) -> TurnResult:
        history = await self._store.get_history(thread_id)
        state = await self._store.get_conversation_state(thread_id) or ConversationState.empty()

        excerpts = await self._retrieve(context, question)

        system_prompt = context.system_prompt or build_chat_system_prompt(
            context.topic_label, context.language, context.persona, context.purpose
        )
        options = SessionOptions.for_language(context.language)

        session, state = await self._acquire_session(
            context, context_id, thread_id, history, state, system_prompt, options
        )

        request = TurnRequest(
            context_id=context_id,
            thread_id=thread_id,
            topic_label=context.topic_label,
            message=question,
            history=history,
            system_prompt=system_prompt,
            session_options=options,
        )
        result = await self.coordinator.run(request, session, excerpts, state, channel)

        if result.kind == OutcomeKind.STALE_TARGET:
            logger.debug(f"Turn for {thread_id} abandoned, target closed")
            return self._turn_result(result)

        if not result.kind.delivers_answer:
            message = result.message or FATAL_MESSAGE
            await self._emit_complete(channel, message, [])
            return self._turn_result(result, answer=message)

        answer = result.answer.strip()
        source_info = map_sources(result.sources, excerpts)
        await self._emit_complete(channel, answer, result.sources, source_info)

        new_messages = [
            Message.user(question),
            Message.assistant(answer, sources=result.sources, source_info=source_info),
        ]
        await self._store.append_messages(thread_id, new_messages)

        # Post-turn upkeep must not affect the answer already delivered
        try:
            await self.summarizer.summarize_after_turn(
                history + new_messages,
                result.state.conversation_state,
                context.topic_label,
                thread_id,
                context_id,
                system_prompt,
                options,
            )
        except Exception as e:
            logger.error(f"Error in post-turn summarization for {thread_id}: {e}")

        return self._turn_result(result, answer=answer, sources=result.sources, source_info=source_info)

    async def _retrieve(self, context: RetrievalContext, question: str) -> list[ContextExcerpt]:
        limit = context.excerpt_limit or await self._quota_probe.optimal_excerpt_count()
        excerpts = await self._retrieval.get_relevant_excerpts(context.document_id, question, limit)
        if not excerpts:
            raise NoRelevantExcerpts(f"No excerpts found for {context.document_id}")
        logger.debug(f"Retrieved {len(excerpts)} excerpts for {context.document_id} (limit {limit})")
        return excerpts

    async def _acquire_session(
        self,
        context: RetrievalContext,
        context_id: str,
        thread_id: str,
        history: list[Message],
        state: ConversationState,
        system_prompt: str,
        options: SessionOptions,
    ) -> tuple[SessionHandle, ConversationState]:
        """Reuse, refresh or create the session for ``context_id``."""
        window = self._config.recent_window
        existing = self._registry.get(context_id)

        if existing is not None:
            metrics = self._registry.metrics(context_id)
            if metrics is None or metrics.usage_ratio <= self._config.session_refresh_ratio or not history:
                return existing, state

            logger.info(f"Session usage {metrics.usage_percentage:.1f}% for {context_id}, refreshing")
            state = await self.summarizer.perform_pre_summarization(history, state, context.topic_label, thread_id)
            session = await self._registry.rebuild(context_id, system_prompt, state.summary, history[-window:], options)
            return session, state

        if history:
            state = await self.summarizer.perform_pre_summarization(history, state, context.topic_label, thread_id)
            session = await self._registry.rebuild(context_id, system_prompt, state.summary, history[-window:], options)
            return session, state

        session = await self._registry.create_or_reuse(
            context_id, options, self._registry.seed_prompts(system_prompt, None, [])
        )
        return session, state

    async def _emit_complete(
        self,
        channel: TurnEventChannel,
        answer: str,
        sources: list[str],
        source_info: list[SourceRef] | None = None,
    ) -> None:
        try:
            await channel.emit_turn_complete(answer, sources, source_info)
        except Exception as e:
            logger.error(f"Error sending turn completion: {e}")

    @staticmethod
    def _turn_result(
        result: RetryResult,
        answer: str = "",
        sources: list[str] | None = None,
        source_info: list[SourceRef] | None = None,
    ) -> TurnResult:
        return TurnResult(
            kind=result.kind,
            answer=answer,
            sources=sources or [],
            source_info=source_info or [],
            timeout_attempts=result.state.timeout_attempts,
            capacity_attempts=result.state.capacity_attempts,
            session_reconstructions=result.state.reconstructions,
        )

    async def close(self) -> None:
        """Destroy every live session."""
        await self._registry.destroy_all()
