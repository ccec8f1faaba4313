# tests/test_retry.py
"""Tests for RetryCoordinator timeout and capacity retries."""

from unittest.mock import AsyncMock

import pytest
from conftest import SUCCESS_RESPONSE, make_excerpts, make_history

from paper_chat.budget_planner import ContextBudgetPlanner
from paper_chat.config import SessionOptions
from paper_chat.exceptions import CapacityExceededError
from paper_chat.models import (
    CAPACITY_MESSAGE,
    FATAL_MESSAGE,
    TIMEOUT_MESSAGE,
    ConversationState,
    OutcomeKind,
)
from paper_chat.retry import RetryCoordinator, TurnRequest


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def coordinator(runtime, registry, config, sleep):
    planner = ContextBudgetPlanner(runtime, registry, AsyncMock(), config)
    return RetryCoordinator(runtime, registry, planner, config, sleep=sleep)


@pytest.fixture
def request_():
    return TurnRequest(
        context_id="chat-paper",
        thread_id="thread-1",
        topic_label="A Paper",
        message="What is the main result?",
        history=make_history(2),
        system_prompt="system prompt",
        session_options=SessionOptions(),
    )


async def _run(coordinator, registry, request_, channel, excerpts=None):
    session = await registry.create_or_reuse(request_.context_id, request_.session_options)
    return await coordinator.run(
        request_, session, excerpts or make_excerpts(5), ConversationState.empty(), channel
    )


class TestSuccess:
    @pytest.mark.asyncio
    async def test_streams_answer(self, coordinator, registry, request_, channel):
        result = await _run(coordinator, registry, request_, channel)
        assert result.kind == OutcomeKind.SUCCESS
        assert result.answer == "The model uses attention."
        assert result.sources == ["Section: Methods 0 > P 1"]
        deltas = [e.text for e in channel.drain()]
        assert "".join(deltas) == "The model uses attention."

    @pytest.mark.asyncio
    async def test_malformed_still_delivers(self, runtime, coordinator, registry, request_, channel):
        runtime.scripts = [['{"answer": "Answer without an ending", "sources": [']]
        result = await _run(coordinator, registry, request_, channel)
        assert result.kind == OutcomeKind.MALFORMED
        assert result.answer == "Answer without an ending"
        assert result.sources == []


class TestTimeoutRetries:
    @pytest.mark.asyncio
    async def test_three_timeouts_is_terminal(self, runtime, coordinator, registry, request_, channel, sleep):
        runtime.scripts = [[5.0], [5.0], [5.0]]
        result = await _run(coordinator, registry, request_, channel)

        assert result.kind == OutcomeKind.TIMEOUT
        assert result.message == TIMEOUT_MESSAGE
        assert result.state.timeout_attempts == 3
        assert result.state.reconstructions == 2
        assert len(runtime.destroyed) == 2
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_recovers_after_timeouts(self, runtime, coordinator, registry, request_, channel):
        runtime.scripts = [[5.0], [5.0], [SUCCESS_RESPONSE]]
        result = await _run(coordinator, registry, request_, channel)

        assert result.kind == OutcomeKind.SUCCESS
        assert result.state.reconstructions == 2
        assert result.state.session is registry.get("chat-paper")

    @pytest.mark.asyncio
    async def test_reconstruction_seeds_recent_turns(self, runtime, coordinator, registry, request_, channel):
        runtime.scripts = [[5.0], [SUCCESS_RESPONSE]]
        await _run(coordinator, registry, request_, channel)
        seed = registry.get("chat-paper").initial_prompts
        assert [p["content"] for p in seed[1:]] == [m.content for m in request_.history]

    @pytest.mark.asyncio
    async def test_slow_stream_after_first_fragment_is_not_a_timeout(
        self, runtime, coordinator, registry, request_, channel
    ):
        runtime.scripts = [['{"answer": "Slow but ', 0.3, 'steady answer", "sources": []}']]
        result = await _run(coordinator, registry, request_, channel)
        assert result.kind == OutcomeKind.SUCCESS
        assert result.answer == "Slow but steady answer"
        assert result.state.timeout_attempts == 1


class TestCapacityRetries:
    @pytest.mark.asyncio
    async def test_drops_two_excerpts_per_retry(self, runtime, coordinator, registry, request_, channel):
        runtime.scripts = [
            [CapacityExceededError("QuotaExceededError")],
            [CapacityExceededError("QuotaExceededError")],
            [SUCCESS_RESPONSE],
        ]
        result = await _run(coordinator, registry, request_, channel)

        assert result.kind == OutcomeKind.SUCCESS
        assert [p.count("[Section:") for p in runtime.prompts] == [5, 3, 1]
        assert result.state.capacity_attempts == 3
        assert result.state.reconstructions == 0

    @pytest.mark.asyncio
    async def test_exhausted_capacity(self, runtime, coordinator, registry, request_, channel):
        runtime.scripts = [[RuntimeError("The input is too large.")]] * 3
        result = await _run(coordinator, registry, request_, channel)

        assert result.kind == OutcomeKind.CAPACITY_EXCEEDED
        assert result.message == CAPACITY_MESSAGE
        assert len(runtime.prompts) == 3

    @pytest.mark.asyncio
    async def test_replan_failure_is_capacity(self, runtime, coordinator, registry, request_, channel):
        runtime.scripts = [[CapacityExceededError("quota")]]
        calls = []

        def measure(session, text):
            calls.append(text)
            return 10 if len(calls) == 1 else 10**6

        runtime.measure = measure
        result = await _run(coordinator, registry, request_, channel)

        assert result.kind == OutcomeKind.CAPACITY_EXCEEDED
        assert result.message == CAPACITY_MESSAGE
        assert len(runtime.prompts) == 1


class TestTerminalOutcomes:
    @pytest.mark.asyncio
    async def test_other_errors_are_fatal(self, runtime, coordinator, registry, request_, channel):
        runtime.scripts = [[ValueError("boom")]]
        result = await _run(coordinator, registry, request_, channel)
        assert result.kind == OutcomeKind.FATAL
        assert result.message == FATAL_MESSAGE
        assert len(runtime.prompts) == 1

    @pytest.mark.asyncio
    async def test_closed_channel_is_stale(self, runtime, coordinator, registry, request_, channel):
        channel.close()
        result = await _run(coordinator, registry, request_, channel)
        assert result.kind == OutcomeKind.STALE_TARGET
        assert result.message is None
        assert runtime.prompts == []

    @pytest.mark.asyncio
    async def test_budget_exhausted(self, runtime, coordinator, registry, request_, channel):
        runtime.measure = lambda session, text: 10**6
        result = await _run(coordinator, registry, request_, channel)
        assert result.kind == OutcomeKind.BUDGET_EXHAUSTED
        assert result.message.startswith("Context too large")
        assert runtime.prompts == []
