# paper_chat/budget_planner.py
"""
ContextBudgetPlanner - fits a RAG prompt into the session's measured budget.

A candidate prompt is measured against ``(input_quota - input_usage) *
validation_safety_ratio`` of the live session. When it does not fit, the
planner degrades it in strict order, re-measuring after each step:

1. SUMMARIZE: on the first failure only, fold older history into the rolling
   summary and rebuild the session with the summary and the last raw turns.
2. TRIM: drop the lowest-priority excerpts, never going below one.
3. FALLBACK: after ``max_planning_attempts``, keep only the top one or two
   original excerpts.

Excerpts are passed in priority order (best first); they are rendered in
document order.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field

from paper_chat.config import EngineConfig, SessionOptions
from paper_chat.models import (
    BudgetValidation,
    ContextExcerpt,
    ConversationState,
    DegradationStep,
    Message,
    in_document_order,
)
from paper_chat.prompts import build_context_prompt
from paper_chat.runtime import ModelRuntime, SessionHandle
from paper_chat.session_registry import SessionRegistry
from paper_chat.summarizer import ConversationSummarizer

logger = logging.getLogger(__name__)

EXCERPT_SEPARATOR = "\n\n---\n\n"
BUDGET_EXHAUSTED_MESSAGE = (
    "Context too large even after aggressive trimming. Try a shorter question or use a model with larger context."
)


class PlanResult(BaseModel):
    """Outcome of one planning call. ``error`` is set instead of raising."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    prompt: str = ""
    final_excerpts: list[ContextExcerpt] = Field(default_factory=list)
    session: SessionHandle
    conversation_state: ConversationState
    error: str | None = None
    degradation_steps: list[DegradationStep] = Field(default_factory=list)
    attempts: int = 0
    validation: BudgetValidation | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def render_excerpts(excerpts: list[ContextExcerpt]) -> str:
    """Render excerpts with citation headers, in ascending document order."""
    return EXCERPT_SEPARATOR.join(excerpt.render() for excerpt in in_document_order(excerpts))


class ContextBudgetPlanner:
    """Builds a prompt that fits the session, degrading context as needed."""

    def __init__(
        self,
        runtime: ModelRuntime,
        registry: SessionRegistry,
        summarizer: ConversationSummarizer,
        config: EngineConfig | None = None,
    ) -> None:
        self._runtime = runtime
        self._registry = registry
        self._summarizer = summarizer
        self._config = config or EngineConfig()

    def build_prompt(self, excerpts: list[ContextExcerpt], message: str) -> str:
        return build_context_prompt(render_excerpts(excerpts), message)

    async def validate(self, session: SessionHandle, prompt: str) -> BudgetValidation:
        """Measure ``prompt`` against what is left in ``session``.

        Falls back to a character-based estimate if the runtime cannot measure.
        """
        estimated = False
        try:
            measured = await self._runtime.measure_input_tokens(session, prompt)
        except Exception as e:
            logger.error(f"Error measuring input usage, estimating instead: {e}")
            measured = self._config.estimate_tokens(prompt)
            estimated = True

        quota = session.input_quota or 0
        remaining = quota - (session.input_usage or 0)
        available = int(remaining * self._config.validation_safety_ratio)
        fits = measured <= available
        logger.debug(f"Prompt validation: {measured} tokens, available {available}/{quota}, fits={fits}")
        return BudgetValidation(
            fits=fits,
            measured_tokens=measured,
            available_tokens=available,
            quota=quota,
            estimated=estimated,
        )

    async def plan(
        self,
        session: SessionHandle,
        excerpts: list[ContextExcerpt],
        message: str,
        history: list[Message],
        conversation_state: ConversationState,
        system_prompt: str,
        session_options: SessionOptions,
        *,
        context_id: str,
        thread_id: str,
        topic_label: str,
    ) -> PlanResult:
        current = list(excerpts)
        state = conversation_state
        steps: list[DegradationStep] = []
        summarized = False
        fallback_used = False
        attempt = 0

        def _result(**kwargs) -> PlanResult:
            return PlanResult(
                session=session,
                conversation_state=state,
                degradation_steps=steps,
                attempts=attempt,
                **kwargs,
            )

        while True:
            attempt += 1
            prompt = self.build_prompt(current, message)
            validation = await self.validate(session, prompt)

            if validation.fits:
                logger.debug(f"Validation passed on attempt {attempt} with {len(current)} excerpts")
                return _result(prompt=prompt, final_excerpts=current, validation=validation)

            logger.warning(
                f"Prompt too large ({validation.measured_tokens} > {validation.available_tokens}) "
                f"on attempt {attempt} with {len(current)} excerpts"
            )

            if attempt == 1 and not summarized and len(history) > self._config.min_history_for_summarization:
                state = await self._summarizer.perform_pre_summarization(history, state, topic_label, thread_id)
                session = await self._registry.rebuild(
                    context_id,
                    system_prompt,
                    state.summary,
                    history[-self._config.recent_window :],
                    session_options,
                )
                summarized = True
                steps.append(DegradationStep.SUMMARIZE)
                continue

            if not current:
                break

            if attempt >= self._config.max_planning_attempts:
                if fallback_used:
                    break
                logger.error("Max planning attempts reached, using minimal excerpts")
                current = list(excerpts[: self._config.fallback_excerpt_count])
                fallback_used = True
                steps.append(DegradationStep.FALLBACK)
                continue

            trimmed = current[: max(1, len(current) - self._config.trim_step)]
            if len(trimmed) == len(current):
                # Already at the single highest-priority excerpt
                break
            current = trimmed
            steps.append(DegradationStep.TRIM)

        logger.error(f"No excerpt count fits the budget for {context_id}")
        return _result(error=BUDGET_EXHAUSTED_MESSAGE, validation=validation)
