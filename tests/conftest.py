# tests/conftest.py
"""
Shared pytest fixtures for paper_chat tests.

The fake runtime replays scripted streams: each script is a list whose items
are text fragments, exceptions to raise, or floats (seconds to sleep before
the next item).
"""

import asyncio
import logging

import pytest

from paper_chat.config import EngineConfig
from paper_chat.events import QueueEventChannel
from paper_chat.models import ContextExcerpt, Message
from paper_chat.session_registry import SessionRegistry
from paper_chat.storage import InMemoryConversationStore

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logging.getLogger("paper_chat").setLevel(logging.DEBUG)

SUCCESS_RESPONSE = '{"answer": "The model uses attention.", "sources": ["Section: Methods 0 > P 1"]}'


class FakeSession:
    """Session handle with settable usage counters."""

    _next_id = 0

    def __init__(self, input_usage=0, input_quota=1000, initial_prompts=None):
        FakeSession._next_id += 1
        self.id = FakeSession._next_id
        self.input_usage = input_usage
        self.input_quota = input_quota
        self.initial_prompts = list(initial_prompts or [])
        self.destroyed = False


class FakeRuntime:
    """Scripted ModelRuntime."""

    def __init__(self, input_quota=1000, input_usage=0):
        self.input_quota = input_quota
        self.input_usage = input_usage
        self.scripts: list[list] = []
        self.default_script = [SUCCESS_RESPONSE]
        self.created: list[FakeSession] = []
        self.destroyed: list[FakeSession] = []
        self.prompts: list[str] = []
        self.measure_calls = 0
        self.fail_create = False
        self.fail_measure = False
        self.usage_per_generate = 0

    def measure(self, session, text):
        return 10

    async def create_session(self, options, initial_prompts=None):
        if self.fail_create:
            raise RuntimeError("model unavailable")
        session = FakeSession(self.input_usage, self.input_quota, initial_prompts)
        self.created.append(session)
        return session

    async def measure_input_tokens(self, session, text):
        self.measure_calls += 1
        if self.fail_measure:
            raise RuntimeError("measureInputUsage not supported")
        return self.measure(session, text)

    def stream_generate(self, session, prompt, json_schema):
        self.prompts.append(prompt)
        session.input_usage += self.usage_per_generate
        script = self.scripts.pop(0) if self.scripts else list(self.default_script)
        return self._play(script)

    async def _play(self, script):
        for item in script:
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, float):
                await asyncio.sleep(item)
                continue
            yield item

    async def destroy_session(self, session):
        session.destroyed = True
        self.destroyed.append(session)


class FakeSummarizer:
    """Summarizer that records calls and returns a numbered summary."""

    def __init__(self, fail=False):
        self.calls: list[list[Message]] = []
        self.fail = fail

    async def summarize(self, messages, topic_label):
        self.calls.append(list(messages))
        if self.fail:
            raise RuntimeError("summarizer offline")
        return f"summary {len(self.calls)} of {len(messages)} messages"


class FakeRetrieval:
    """Returns the configured excerpts, truncated to the requested limit."""

    def __init__(self, excerpts=None):
        self.excerpts = list(excerpts or [])
        self.calls: list[tuple[str, str, int]] = []

    async def get_relevant_excerpts(self, document_id, query, limit):
        self.calls.append((document_id, query, limit))
        return self.excerpts[:limit]


def make_excerpts(count, section="Methods"):
    """Excerpts in priority order; document order is reversed to exercise sorting."""
    return [
        ContextExcerpt(
            content=f"Excerpt body {i}",
            section_path=f"{section} {i}",
            document_order_index=count - i,
            paragraph_index=0,
            css_selector=f"#sec-{i}",
        )
        for i in range(count)
    ]


def make_history(count):
    history = []
    for i in range(count):
        if i % 2 == 0:
            history.append(Message.user(f"question {i}"))
        else:
            history.append(Message.assistant(f"answer {i}"))
    return history


@pytest.fixture
def config():
    return EngineConfig(first_fragment_timeout_s=0.2, retry_delay_s=0.0)


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def registry(runtime, config):
    return SessionRegistry(runtime, config)


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def fake_summarizer():
    return FakeSummarizer()


@pytest.fixture
def channel():
    return QueueEventChannel()
