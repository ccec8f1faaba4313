# paper_chat/session_registry.py
"""
SessionRegistry - owns exactly one live model session per context id.

Sessions are disposable: reconstruction always destroys the old handle before
creating a new one, so two live handles never share a context id. Working
memory survives a reset because new sessions are seeded from the
``ConversationState``.
"""

from __future__ import annotations

import logging

from paper_chat.config import EngineConfig, SessionOptions
from paper_chat.exceptions import SessionNotFound
from paper_chat.models import ConversationState, Message, SessionMetrics
from paper_chat.models.enums import MessageRole
from paper_chat.prompts import build_seed_system_message
from paper_chat.runtime import ModelRuntime, SessionHandle

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Maps context ids to live session handles.

    Constructed once per process and passed by reference to every
    ``TurnController``.

    Examples:
        ```python
        registry = SessionRegistry(runtime)
        session = await registry.create_or_reuse("chat-paper-1", SessionOptions())
        await registry.clone_with_history("chat-paper-1", state, system_prompt, SessionOptions())
        ```
    """

    def __init__(self, runtime: ModelRuntime, config: EngineConfig | None = None) -> None:
        self._runtime = runtime
        self._config = config or EngineConfig()
        self._sessions: dict[str, SessionHandle] = {}

    def get(self, context_id: str) -> SessionHandle | None:
        return self._sessions.get(context_id)

    def require(self, context_id: str) -> SessionHandle:
        """Return the live session for ``context_id`` or raise ``SessionNotFound``."""
        session = self._sessions.get(context_id)
        if session is None:
            raise SessionNotFound(context_id)
        return session

    def has(self, context_id: str) -> bool:
        return context_id in self._sessions

    def active_contexts(self) -> list[str]:
        return list(self._sessions)

    def metrics(self, context_id: str) -> SessionMetrics | None:
        """Read live usage counters of the session for ``context_id``."""
        session = self._sessions.get(context_id)
        if session is None:
            return None
        try:
            usage, quota = session.input_usage, session.input_quota
        except (AttributeError, RuntimeError) as e:
            logger.warning(f"Could not read usage counters for {context_id}: {e}")
            usage, quota = 0, 0
        return SessionMetrics.from_counts(usage, quota)

    async def create_or_reuse(
        self,
        context_id: str,
        options: SessionOptions,
        initial_prompts: list[dict[str, str]] | None = None,
    ) -> SessionHandle:
        """Return the live session for ``context_id``, creating one if absent."""
        existing = self._sessions.get(context_id)
        if existing is not None:
            logger.debug(f"Reusing session for context: {context_id}")
            return existing

        logger.debug(f"Creating session for context: {context_id} ({len(initial_prompts or [])} seed prompts)")
        session = await self._runtime.create_session(options, initial_prompts)
        self._sessions[context_id] = session
        return session

    async def destroy(self, context_id: str) -> None:
        """Destroy and forget the session for ``context_id`` (no-op when absent)."""
        session = self._sessions.pop(context_id, None)
        if session is None:
            return
        await self._runtime.destroy_session(session)
        logger.debug(f"Session destroyed for context: {context_id}")

    async def destroy_all(self) -> None:
        for context_id in list(self._sessions):
            await self.destroy(context_id)

    def seed_prompts(
        self,
        system_prompt: str,
        summary: str | None,
        recent_messages: list[Message],
    ) -> list[dict[str, str]]:
        """One system message followed by up to ``recent_window`` raw turns."""
        prompts = [
            {
                "role": MessageRole.SYSTEM.value,
                "content": build_seed_system_message(system_prompt, summary),
            }
        ]
        window = recent_messages[-self._config.recent_window :] if self._config.recent_window else []
        prompts.extend(m.as_prompt() for m in window if m.role != MessageRole.SYSTEM)
        return prompts

    async def rebuild(
        self,
        context_id: str,
        system_prompt: str,
        summary: str | None,
        recent_messages: list[Message],
        options: SessionOptions,
    ) -> SessionHandle:
        """Destroy the current session and create a seeded replacement."""
        await self.destroy(context_id)
        prompts = self.seed_prompts(system_prompt, summary, recent_messages)
        session = await self.create_or_reuse(context_id, options, prompts)
        logger.info(f"Session rebuilt for {context_id} with {len(prompts)} seed prompts")
        return session

    async def clone_with_history(
        self,
        context_id: str,
        conversation_state: ConversationState,
        system_prompt: str,
        options: SessionOptions,
    ) -> SessionHandle:
        """Replace the live session, carrying the rolling summary and recent turns forward.

        Raises ``SessionNotFound`` when ``context_id`` has no session to replace.
        """
        self.require(context_id)
        return await self.rebuild(
            context_id,
            system_prompt,
            conversation_state.summary,
            conversation_state.recent_messages,
            options,
        )
