# paper_chat/retry.py
"""
RetryCoordinator - runs one conversational turn under bounded retry policies.

Two nested dimensions:

- Timeout (outer, ``max_timeout_attempts`` total): the first streamed
  fragment is raced against ``first_fragment_timeout_s``. On timeout the
  session is destroyed and cloned with the conversation state, and the turn
  restarts from budget validation after ``retry_delay_s``.
- Capacity (inner, ``max_capacity_attempts`` per timeout attempt): a quota
  error during generation drops ``trim_step`` excerpts (floor 1), re-plans,
  and retries with the same session.

Every attempt produces a tagged ``AttemptOutcome``; only TIMEOUT and
CAPACITY_EXCEEDED are retried.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from pydantic import BaseModel, ConfigDict, Field

from paper_chat.budget_planner import ContextBudgetPlanner, PlanResult
from paper_chat.config import EngineConfig, SessionOptions
from paper_chat.exceptions import classify_generation_error
from paper_chat.math_spans import MathSpanProtector
from paper_chat.models import (
    CAPACITY_MESSAGE,
    FATAL_MESSAGE,
    TIMEOUT_MESSAGE,
    AttemptOutcome,
    ContextExcerpt,
    ConversationState,
    Message,
    OutcomeKind,
)
from paper_chat.prompts import CHAT_RESPONSE_SCHEMA
from paper_chat.runtime import ModelRuntime, SessionHandle, TurnEventChannel
from paper_chat.session_registry import SessionRegistry
from paper_chat.stream_decoder import StreamDecoder
from paper_chat.streaming import CancellationToken, FragmentStream

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class TurnRequest(BaseModel):
    """Everything one turn needs that does not change across retries."""

    context_id: str
    thread_id: str
    topic_label: str
    message: str
    history: list[Message] = Field(default_factory=list)
    system_prompt: str
    session_options: SessionOptions = Field(default_factory=SessionOptions)


class RetryState(BaseModel):
    """Mutable per-turn progress shared by both retry dimensions."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    session: SessionHandle
    conversation_state: ConversationState
    excerpts: list[ContextExcerpt] = Field(default_factory=list)
    prompt: str = ""
    timeout_attempts: int = 0
    capacity_attempts: int = 0
    reconstructions: int = 0


class RetryResult(BaseModel):
    """Tagged result of a coordinated turn."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: OutcomeKind
    answer: str = ""
    sources: list[str] = Field(default_factory=list)
    message: str | None = Field(default=None, description="User-visible text for terminal failures")
    state: RetryState


class RetryCoordinator:
    """Drives budget planning and streaming generation with timeout and capacity retries."""

    def __init__(
        self,
        runtime: ModelRuntime,
        registry: SessionRegistry,
        planner: ContextBudgetPlanner,
        config: EngineConfig | None = None,
        protector: MathSpanProtector | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._runtime = runtime
        self._registry = registry
        self._planner = planner
        self._config = config or EngineConfig()
        self._protector = protector or MathSpanProtector()
        self._sleep = sleep

    async def run(
        self,
        request: TurnRequest,
        session: SessionHandle,
        excerpts: list[ContextExcerpt],
        conversation_state: ConversationState,
        channel: TurnEventChannel,
    ) -> RetryResult:
        state = RetryState(session=session, conversation_state=conversation_state, excerpts=list(excerpts))

        while True:
            if not await channel.is_open():
                logger.warning(f"Target closed, aborting turn for {request.context_id}")
                return RetryResult(kind=OutcomeKind.STALE_TARGET, state=state)

            plan = await self._plan(request, state)
            if not plan.ok:
                return RetryResult(kind=OutcomeKind.BUDGET_EXHAUSTED, message=plan.error, state=state)

            state.timeout_attempts += 1
            outcome = await self._race_first_fragment(request, state, channel)

            if outcome.kind != OutcomeKind.TIMEOUT:
                return self._finish(outcome, state)

            if state.timeout_attempts >= self._config.max_timeout_attempts:
                logger.error(f"Chat request timed out after {state.timeout_attempts} attempts")
                return RetryResult(kind=OutcomeKind.TIMEOUT, message=TIMEOUT_MESSAGE, state=state)

            logger.warning(
                f"Timeout after {self._config.first_fragment_timeout_s}s "
                f"(attempt {state.timeout_attempts}/{self._config.max_timeout_attempts}), recreating session"
            )
            await self._reconstruct(request, state)
            await self._sleep(self._config.retry_delay_s)

    async def _plan(self, request: TurnRequest, state: RetryState) -> PlanResult:
        plan = await self._planner.plan(
            state.session,
            state.excerpts,
            request.message,
            request.history,
            state.conversation_state,
            request.system_prompt,
            request.session_options,
            context_id=request.context_id,
            thread_id=request.thread_id,
            topic_label=request.topic_label,
        )
        state.session = plan.session
        state.conversation_state = plan.conversation_state
        if plan.ok:
            state.excerpts = plan.final_excerpts
            state.prompt = plan.prompt
        return plan

    async def _reconstruct(self, request: TurnRequest, state: RetryState) -> None:
        """Destroy and clone the session, seeding it with the latest raw turns."""
        carried = state.conversation_state.model_copy(
            update={"recent_messages": request.history[-self._config.recent_window :]}
        )
        state.session = await self._registry.clone_with_history(
            request.context_id, carried, request.system_prompt, request.session_options
        )
        state.reconstructions += 1

    async def _race_first_fragment(
        self,
        request: TurnRequest,
        state: RetryState,
        channel: TurnEventChannel,
    ) -> AttemptOutcome:
        """Run generation, giving up if no fragment arrives within the timeout."""
        first_fragment = asyncio.Event()
        token = CancellationToken()
        generation = asyncio.create_task(
            self._generate_with_capacity_retries(request, state, channel, first_fragment, token)
        )
        first_wait = asyncio.create_task(first_fragment.wait())

        try:
            done, _ = await asyncio.wait(
                {generation, first_wait},
                timeout=self._config.first_fragment_timeout_s,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            token.cancel("turn cancelled")
            generation.cancel()
            raise
        finally:
            first_wait.cancel()

        if not done:
            token.cancel("first fragment timeout")
            generation.cancel()
            try:
                await generation
            except asyncio.CancelledError:
                pass
            return AttemptOutcome(kind=OutcomeKind.TIMEOUT)

        # First fragment arrived (or generation finished): no further timeout applies
        return await generation

    async def _generate_with_capacity_retries(
        self,
        request: TurnRequest,
        state: RetryState,
        channel: TurnEventChannel,
        first_fragment: asyncio.Event,
        token: CancellationToken,
    ) -> AttemptOutcome:
        attempt = 0
        while True:
            attempt += 1
            state.capacity_attempts += 1
            outcome = await self._stream_once(state.session, state.prompt, channel, first_fragment, token)
            if outcome.kind != OutcomeKind.CAPACITY_EXCEEDED:
                return outcome

            if attempt >= self._config.max_capacity_attempts:
                logger.error(f"Capacity exceeded after {attempt} attempts")
                return outcome

            logger.warning(
                f"Capacity exceeded (attempt {attempt}/{self._config.max_capacity_attempts}), "
                "retrying with reduced context"
            )
            state.excerpts = state.excerpts[: max(1, len(state.excerpts) - self._config.trim_step)]

            if not await channel.is_open():
                return AttemptOutcome(kind=OutcomeKind.STALE_TARGET)

            plan = await self._plan(request, state)
            if not plan.ok:
                logger.error("Failed to reduce context further")
                return AttemptOutcome(kind=OutcomeKind.CAPACITY_EXCEEDED, error=plan.error)

    async def _stream_once(
        self,
        session: SessionHandle,
        prompt: str,
        channel: TurnEventChannel,
        first_fragment: asyncio.Event,
        token: CancellationToken,
    ) -> AttemptOutcome:
        decoder = StreamDecoder(self._protector)
        stream: FragmentStream | None = None
        try:
            source = self._runtime.stream_generate(session, prompt, CHAT_RESPONSE_SCHEMA)
            stream = FragmentStream(source, token, first_fragment)
            async for fragment in stream:
                delta = decoder.feed(fragment)
                if delta:
                    await self._emit_delta(channel, delta)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            kind = classify_generation_error(e)
            logger.warning(f"Generation failed ({kind.value}): {e}")
            return AttemptOutcome(kind=kind, error=str(e))
        finally:
            if stream is not None:
                await stream.aclose()

        decoded = decoder.finish()
        if decoded.final_delta:
            await self._emit_delta(channel, decoded.final_delta)
        kind = OutcomeKind.MALFORMED if decoded.malformed else OutcomeKind.SUCCESS
        logger.debug(f"Response streamed ({kind.value}, {len(decoded.sources)} sources)")
        return AttemptOutcome(kind=kind, answer=decoded.answer, sources=decoded.sources)

    async def _emit_delta(self, channel: TurnEventChannel, delta: str) -> None:
        try:
            await channel.emit_delta(delta)
        except Exception as e:
            logger.error(f"Error sending delta: {e}")

    def _finish(self, outcome: AttemptOutcome, state: RetryState) -> RetryResult:
        if outcome.kind.delivers_answer:
            return RetryResult(kind=outcome.kind, answer=outcome.answer, sources=outcome.sources, state=state)
        if outcome.kind == OutcomeKind.CAPACITY_EXCEEDED:
            return RetryResult(kind=outcome.kind, message=CAPACITY_MESSAGE, state=state)
        if outcome.kind == OutcomeKind.STALE_TARGET:
            return RetryResult(kind=outcome.kind, state=state)
        logger.error(f"Turn failed: {outcome.error}")
        return RetryResult(kind=OutcomeKind.FATAL, message=FATAL_MESSAGE, state=state)
