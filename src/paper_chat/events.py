# paper_chat/events.py
"""Queue-backed event channel for turn progress."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from pydantic import BaseModel, Field

from paper_chat.models import SourceRef

logger = logging.getLogger(__name__)


class TurnEventType(str, Enum):
    DELTA = "delta"
    COMPLETE = "complete"


class TurnEvent(BaseModel):
    """One notification sent to the caller of a turn."""

    type: TurnEventType
    text: str = ""
    sources: list[str] = Field(default_factory=list)
    source_info: list[SourceRef] = Field(default_factory=list)


class QueueEventChannel:
    """
    ``TurnEventChannel`` that publishes onto an ``asyncio.Queue``.

    Closing the channel models the receiving page going away: later events
    are dropped with a warning instead of raising.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self.queue: asyncio.Queue[TurnEvent] = asyncio.Queue(maxsize=maxsize)
        self._open = True

    def close(self) -> None:
        self._open = False

    async def is_open(self) -> bool:
        return self._open

    async def _publish(self, event: TurnEvent) -> None:
        if not self._open:
            logger.warning(f"Event channel closed, dropping {event.type.value} event")
            return
        await self.queue.put(event)

    async def emit_delta(self, text: str) -> None:
        await self._publish(TurnEvent(type=TurnEventType.DELTA, text=text))

    async def emit_turn_complete(
        self,
        answer: str,
        sources: list[str],
        source_info: list[SourceRef] | None = None,
    ) -> None:
        await self._publish(
            TurnEvent(
                type=TurnEventType.COMPLETE,
                text=answer,
                sources=sources,
                source_info=source_info or [],
            )
        )

    def drain(self) -> list[TurnEvent]:
        """Return and remove every queued event without waiting."""
        events: list[TurnEvent] = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events
