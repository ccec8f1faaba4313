# tests/test_budget_planner.py
"""Tests for ContextBudgetPlanner validation and degradation."""

from unittest.mock import AsyncMock

import pytest
from conftest import FakeSession, make_excerpts, make_history

from paper_chat.budget_planner import (
    BUDGET_EXHAUSTED_MESSAGE,
    ContextBudgetPlanner,
    render_excerpts,
)
from paper_chat.config import EngineConfig, SessionOptions
from paper_chat.models import ConversationState, DegradationStep


def _per_excerpt(tokens):
    """Measurement that charges ``tokens`` per rendered excerpt."""
    return lambda session, text: text.count("[Section:") * tokens


async def _plan(planner, session, excerpts, history=None, state=None):
    return await planner.plan(
        session,
        excerpts,
        "What is the main result?",
        history or [],
        state or ConversationState.empty(),
        "system prompt",
        SessionOptions(),
        context_id="chat-paper",
        thread_id="thread-1",
        topic_label="A Paper",
    )


@pytest.fixture
def summarizer():
    return AsyncMock()


@pytest.fixture
def planner(runtime, registry, summarizer, config):
    return ContextBudgetPlanner(runtime, registry, summarizer, config)


class TestRenderExcerpts:
    def test_rendered_in_document_order(self):
        excerpts = make_excerpts(3)
        rendered = render_excerpts(excerpts)
        assert rendered.index("Excerpt body 2") < rendered.index("Excerpt body 1") < rendered.index("Excerpt body 0")

    def test_citation_headers(self):
        rendered = render_excerpts(make_excerpts(1))
        assert rendered.startswith("[Section: Methods 0 > P 1]\nExcerpt body 0")

    def test_separator_between_excerpts(self):
        assert render_excerpts(make_excerpts(2)).count("\n\n---\n\n") == 1


class TestValidate:
    @pytest.mark.asyncio
    async def test_measurement_against_safety_margin(self, runtime, planner):
        runtime.measure = _per_excerpt(1800)
        session = FakeSession(input_usage=0, input_quota=10000)
        validation = await planner.validate(session, planner.build_prompt(make_excerpts(5), "q"))
        assert validation.measured_tokens == 9000
        assert validation.available_tokens == 8000
        assert not validation.fits

    @pytest.mark.asyncio
    async def test_usage_reduces_available(self, planner):
        session = FakeSession(input_usage=500, input_quota=1000)
        validation = await planner.validate(session, "prompt")
        assert validation.available_tokens == 400
        assert validation.fits

    @pytest.mark.asyncio
    async def test_estimate_when_measurement_fails(self, runtime, planner, config):
        runtime.fail_measure = True
        prompt = "x" * 41
        validation = await planner.validate(FakeSession(), prompt)
        assert validation.estimated
        assert validation.measured_tokens == config.estimate_tokens(prompt) == 11


class TestPlan:
    @pytest.mark.asyncio
    async def test_trims_two_excerpts_then_fits(self, runtime, planner, summarizer):
        runtime.measure = _per_excerpt(1800)
        excerpts = make_excerpts(5)
        result = await _plan(planner, FakeSession(input_quota=10000), excerpts)

        assert result.ok
        assert result.final_excerpts == excerpts[:3]
        assert result.degradation_steps == [DegradationStep.TRIM]
        assert result.attempts == 2
        assert result.prompt.count("[Section:") == 3
        summarizer.perform_pre_summarization.assert_not_called()

    @pytest.mark.asyncio
    async def test_fits_first_time(self, planner):
        excerpts = make_excerpts(4)
        result = await _plan(planner, FakeSession(), excerpts)
        assert result.ok
        assert result.final_excerpts == excerpts
        assert result.degradation_steps == []
        assert result.prompt.endswith("User question: What is the main result?")

    @pytest.mark.asyncio
    async def test_summarizes_once_then_trims(self, runtime, registry, planner, summarizer):
        runtime.measure = _per_excerpt(100)
        runtime.input_quota = 400
        summarizer.perform_pre_summarization.return_value = ConversationState(summary="S", last_summarized_index=1)
        original = FakeSession(input_usage=350, input_quota=400)
        history = make_history(8)

        result = await _plan(planner, original, make_excerpts(5), history=history)

        assert result.ok
        assert result.degradation_steps == [DegradationStep.SUMMARIZE, DegradationStep.TRIM]
        assert summarizer.perform_pre_summarization.await_count == 1
        assert result.session is not original
        assert result.session is registry.get("chat-paper")
        assert result.conversation_state.summary == "S"
        seed = result.session.initial_prompts
        assert len(seed) == 7
        assert seed[0]["content"].endswith("Previous conversation summary: S")
        assert [p["content"] for p in seed[1:]] == [m.content for m in history[-6:]]

    @pytest.mark.asyncio
    async def test_short_history_is_not_summarized(self, runtime, planner, summarizer):
        runtime.measure = _per_excerpt(1800)
        result = await _plan(planner, FakeSession(input_quota=10000), make_excerpts(5), history=make_history(3))
        assert result.degradation_steps == [DegradationStep.TRIM]
        summarizer.perform_pre_summarization.assert_not_called()

    @pytest.mark.asyncio
    async def test_budget_exhausted_at_one_excerpt(self, runtime, planner):
        runtime.measure = lambda session, text: 10**6
        result = await _plan(planner, FakeSession(), make_excerpts(5))

        assert not result.ok
        assert result.error == BUDGET_EXHAUSTED_MESSAGE
        assert result.degradation_steps == [DegradationStep.TRIM, DegradationStep.TRIM]
        assert result.final_excerpts == []

    @pytest.mark.asyncio
    async def test_fallback_after_max_attempts(self, runtime, registry, summarizer):
        config = EngineConfig(max_planning_attempts=2)
        planner = ContextBudgetPlanner(runtime, registry, summarizer, config)
        runtime.measure = _per_excerpt(100)
        excerpts = make_excerpts(6)

        result = await _plan(planner, FakeSession(input_quota=300), excerpts)

        assert result.ok
        assert result.degradation_steps == [DegradationStep.TRIM, DegradationStep.FALLBACK]
        assert result.final_excerpts == excerpts[:2]

    @pytest.mark.asyncio
    async def test_planning_is_deterministic(self, runtime, planner):
        runtime.measure = _per_excerpt(1800)
        excerpts = make_excerpts(5)
        first = await _plan(planner, FakeSession(input_quota=10000), excerpts)
        second = await _plan(planner, FakeSession(input_quota=10000), excerpts)
        assert first.prompt == second.prompt
        assert first.final_excerpts == second.final_excerpts
