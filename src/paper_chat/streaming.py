# paper_chat/streaming.py
"""Pull-based fragment stream with cooperative cancellation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable

logger = logging.getLogger(__name__)


class CancellationToken:
    """Flag shared between the party abandoning a stream and its consumer."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class FragmentStream:
    """
    Wraps a runtime's async fragment iterator behind an explicit ``pull``.

    ``pull`` returns the next fragment, or ``None`` once the source is
    exhausted or the token has been cancelled. The first successful pull sets
    ``first_fragment`` (which may be shared by several streams) so callers can
    race it against a timer.
    """

    def __init__(
        self,
        source: AsyncIterable[str],
        token: CancellationToken | None = None,
        first_fragment: asyncio.Event | None = None,
    ) -> None:
        self._source = aiter(source)
        self.token = token or CancellationToken()
        self.first_fragment = first_fragment or asyncio.Event()
        self.fragments_received = 0
        self._exhausted = False

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    async def pull(self) -> str | None:
        if self._exhausted or self.token.cancelled:
            return None
        try:
            fragment = await anext(self._source)
        except StopAsyncIteration:
            self._exhausted = True
            return None
        if self.token.cancelled:
            return None
        self.fragments_received += 1
        self.first_fragment.set()
        return fragment

    async def aclose(self) -> None:
        """Close the underlying generator if it supports it."""
        self._exhausted = True
        closer = getattr(self._source, "aclose", None)
        if closer is not None:
            try:
                await closer()
            except RuntimeError as e:
                # aclose() on a generator that is currently running
                logger.debug(f"Fragment source could not be closed: {e}")

    def __aiter__(self) -> FragmentStream:
        return self

    async def __anext__(self) -> str:
        fragment = await self.pull()
        if fragment is None:
            raise StopAsyncIteration
        return fragment
