"""Async fan-out bus for bridge events.

Task runs publish card and file events; each SSE client subscribes
and gets its own bounded queue. A slow subscriber loses its oldest
events rather than blocking publishers.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class BridgeEvent:
    """A single event for chat-layer consumers."""

    event_type: str
    channel_key: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event_type,
            "channel_key": self.channel_key,
            "timestamp": self.timestamp,
            **self.data,
        }


class EventBus:
    """Publish/subscribe over per-subscriber asyncio queues."""

    def __init__(self, maxsize: int = 1000) -> None:
        self._maxsize = maxsize
        self._subscribers: set[asyncio.Queue[BridgeEvent]] = set()
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[BridgeEvent]:
        queue: asyncio.Queue[BridgeEvent] = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers.add(queue)
        logger.debug("EventBus subscriber added (%d total)", len(self._subscribers))
        return queue

    def unsubscribe(self, queue: asyncio.Queue[BridgeEvent]) -> None:
        self._subscribers.discard(queue)
        logger.debug("EventBus subscriber removed (%d total)", len(self._subscribers))

    def publish(self, event: BridgeEvent) -> None:
        if self._closed:
            return
        for queue in list(self._subscribers):
            if queue.full():
                try:
                    dropped = queue.get_nowait()
                    logger.warning(
                        "EventBus subscriber full, dropped %s", dropped.event_type,
                    )
                except asyncio.QueueEmpty:
                    pass
            queue.put_nowait(event)

    def emit(self, event_type: str, channel_key: str = "", **data: Any) -> BridgeEvent:
        event = BridgeEvent(event_type=event_type, channel_key=channel_key, data=data)
        self.publish(event)
        return event

    async def consume(
        self, queue: asyncio.Queue[BridgeEvent], poll: float = 0.5,
    ) -> AsyncIterator[BridgeEvent]:
        """Yield events from *queue* until close()."""
        while not self._closed:
            try:
                yield await asyncio.wait_for(queue.get(), timeout=poll)
            except asyncio.TimeoutError:
                continue

    def close(self) -> None:
        """Stop all consumer loops permanently."""
        self._closed = True
