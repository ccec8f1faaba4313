# paper_chat/quota.py
"""Device input quota detection and excerpt-count sizing."""

from __future__ import annotations

import logging

from paper_chat.config import EngineConfig, SessionOptions
from paper_chat.runtime import ModelRuntime

logger = logging.getLogger(__name__)

# Token estimates for the chat prompt: system + summary + recent turns + overhead
CHAT_PROMPT_TOKENS = 800
RESPONSE_BUFFER_TOKENS = 500
DEFAULT_EXCERPT_CHARS = 500
MIN_EXCERPTS = 2
MAX_EXCERPTS = 8


class InputQuotaProbe:
    """
    Detects the device's input quota once by opening a throwaway session.

    If the runtime cannot create a session the configured fallback quota is
    used instead.
    """

    def __init__(
        self,
        runtime: ModelRuntime,
        config: EngineConfig | None = None,
        options: SessionOptions | None = None,
    ) -> None:
        self._runtime = runtime
        self._config = config or EngineConfig()
        self._options = options or SessionOptions()
        self._input_quota: int | None = None

    async def get_input_quota(self) -> int:
        if self._input_quota is None:
            self._input_quota = await self._detect()
        return self._input_quota

    async def _detect(self) -> int:
        try:
            session = await self._runtime.create_session(self._options, None)
        except Exception as e:
            logger.error(f"Failed to detect input quota, using fallback {self._config.fallback_input_quota}: {e}")
            return self._config.fallback_input_quota
        try:
            quota = session.input_quota or self._config.fallback_input_quota
        finally:
            await self._runtime.destroy_session(session)
        logger.debug(f"Detected input quota: {quota} tokens")
        return quota

    async def optimal_excerpt_count(self, avg_excerpt_chars: int | None = None) -> int:
        """How many excerpts to retrieve so prompt, excerpts and response fit (clamped 2..8)."""
        quota = await self.get_input_quota()
        avg_chars = avg_excerpt_chars or DEFAULT_EXCERPT_CHARS
        avg_tokens = max(1, -(-avg_chars // self._config.chars_per_token))
        available = quota - CHAT_PROMPT_TOKENS - RESPONSE_BUFFER_TOKENS
        count = max(MIN_EXCERPTS, min(MAX_EXCERPTS, available // avg_tokens))
        logger.debug(f"Optimal excerpt count: {count} (quota {quota}, available {available})")
        return count

    def reset(self) -> None:
        self._input_quota = None
