# paper_chat/summarizer.py
"""
ConversationSummarizer - folds older turns into a bounded rolling summary.

The newest ``recent_window`` messages always stay verbatim. Everything older
that has not been folded yet is condensed by the summarization collaborator
and merged into the existing summary:

- no summary yet: the new summary becomes the summary (count 1);
- merged fewer than ``summary_merge_limit`` times: concatenate (count + 1);
- otherwise: re-summarize the concatenation into one fresh summary (count 1).

This keeps the summary at roughly two summarization passes regardless of how
long the conversation runs.
"""

from __future__ import annotations

import logging

from paper_chat.config import EngineConfig, SessionOptions
from paper_chat.models import ConversationState, Message
from paper_chat.quota import InputQuotaProbe
from paper_chat.runtime import ConversationStore, Summarizer
from paper_chat.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class ConversationSummarizer:
    """Compacts conversation history and persists the resulting state."""

    def __init__(
        self,
        summarizer: Summarizer,
        store: ConversationStore,
        registry: SessionRegistry,
        quota_probe: InputQuotaProbe,
        config: EngineConfig | None = None,
    ) -> None:
        self._summarizer = summarizer
        self._store = store
        self._registry = registry
        self._quota_probe = quota_probe
        self._config = config or EngineConfig()

    def estimate_tokens(self, history: list[Message], state: ConversationState) -> int:
        """Estimated cost of the verbatim tail plus the existing summary."""
        recent = history[-self._config.recent_window :]
        recent_text = "\n".join(m.content for m in recent)
        return self._config.estimate_tokens(recent_text) + self._config.estimate_tokens(state.summary or "")

    def unsummarized_span(self, history: list[Message], state: ConversationState) -> list[Message]:
        """Messages after ``last_summarized_index`` and before the verbatim tail."""
        start = max(state.last_summarized_index + 1, 0)
        end = len(history) - self._config.recent_window
        if end <= start:
            return []
        return history[start:end]

    async def perform_pre_summarization(
        self,
        history: list[Message],
        state: ConversationState,
        topic_label: str,
        thread_id: str,
    ) -> ConversationState:
        """Fold older turns into the summary if the estimated cost nears the device quota.

        Returns ``state`` unchanged when below the threshold, when there is
        nothing left to fold, or when the summarization collaborator fails.
        """
        if not history:
            return state

        estimated = self.estimate_tokens(history, state)
        input_quota = await self._quota_probe.get_input_quota()
        threshold = int(input_quota * self._config.presummarization_ratio)
        logger.debug(f"Pre-summarization estimate: {estimated} tokens, threshold {threshold} (quota {input_quota})")

        if estimated < threshold:
            return state

        to_fold = self.unsummarized_span(history, state)
        if not to_fold:
            logger.debug("No messages to summarize")
            return state

        new_state = await self._fold(history, state, to_fold, topic_label)
        if new_state is None:
            logger.warning("Summarization failed, keeping original conversation state")
            return state

        await self._store.save_conversation_state(thread_id, new_state)
        logger.info(f"Pre-summarized {len(to_fold)} messages for {thread_id} (summary_count={new_state.summary_count})")
        return new_state

    async def summarize_after_turn(
        self,
        history: list[Message],
        state: ConversationState,
        topic_label: str,
        thread_id: str,
        context_id: str,
        system_prompt: str,
        options: SessionOptions,
    ) -> ConversationState | None:
        """Fold older turns once the live session is nearly full, then clone the session.

        ``history`` must already contain the turn that just completed. Returns
        the new state, or ``None`` when nothing was summarized.
        """
        metrics = self._registry.metrics(context_id)
        if metrics is None or metrics.usage_ratio < self._config.post_turn_summarization_ratio:
            return None

        logger.debug(f"Session usage {metrics.usage_percentage:.1f}% for {context_id}, summarizing")
        to_fold = self.unsummarized_span(history, state)
        if not to_fold:
            return None

        new_state = await self._fold(history, state, to_fold, topic_label)
        if new_state is None:
            return None

        await self._registry.clone_with_history(context_id, new_state, system_prompt, options)
        await self._store.save_conversation_state(thread_id, new_state)
        logger.info(f"Summarized {len(to_fold)} messages after turn and cloned session for {context_id}")
        return new_state

    async def _fold(
        self,
        history: list[Message],
        state: ConversationState,
        to_fold: list[Message],
        topic_label: str,
    ) -> ConversationState | None:
        new_summary = await self._summarize(to_fold, topic_label)
        if not new_summary:
            return None

        if state.summary and state.summary_count >= self._config.summary_merge_limit:
            logger.debug(f"Re-compacting summary (merged {state.summary_count} times)")
            combined = f"{state.summary}\n\n{new_summary}"
            recompacted = await self._summarize([Message.assistant(combined)], topic_label)
            summary = recompacted or new_summary
            summary_count = 1
        elif state.summary:
            summary = f"{state.summary}\n\n{new_summary}"
            summary_count = state.summary_count + 1
        else:
            summary = new_summary
            summary_count = 1

        window = self._config.recent_window
        return ConversationState(
            summary=summary,
            recent_messages=history[-window:],
            last_summarized_index=max(state.last_summarized_index, len(history) - window - 1),
            summary_count=summary_count,
        )

    async def _summarize(self, messages: list[Message], topic_label: str) -> str | None:
        try:
            return await self._summarizer.summarize(messages, topic_label)
        except Exception as e:
            logger.error(f"Error summarizing conversation: {e}")
            return None
