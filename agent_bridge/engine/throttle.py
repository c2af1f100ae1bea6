"""Rate-limited, coalescing, strictly ordered delivery of partial text.

push() never awaits the sink. Values that pass the throttle are put on
an asyncio.Queue drained by a single worker, so delivery N+1 only
starts after delivery N has returned. Inside one interval only the
newest value survives, and the newest value is always delivered
eventually (or on drain()).
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DeliverFn = Callable[[str], Awaitable[None]]


class ThrottledSink:
    """Throttles calls to an async ``deliver(text)`` callable."""

    def __init__(
        self,
        deliver: DeliverFn,
        interval: float = 1.5,
        clock: Callable[[], float] | None = None,
        name: str = "",
    ) -> None:
        self._deliver = deliver
        self.interval = interval
        self._clock = clock or time.monotonic
        self.name = name
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._pending: str | None = None
        self._last_pushed: str | None = None
        self._last_sent_at: float | None = None
        self._closed = False
        self.delivered = 0
        self.failed = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, text: str) -> None:
        """Offer a new value. Delivers now or coalesces into one pending slot."""
        if self._closed or text == self._last_pushed:
            return
        self._last_pushed = text

        if self._timer is not None:
            self._pending = text
            return

        now = self._clock()
        if self._last_sent_at is None or now - self._last_sent_at >= self.interval:
            self._enqueue(text, now)
            return

        self._pending = text
        wait = self.interval - (now - self._last_sent_at)
        self._timer = asyncio.get_running_loop().call_later(wait, self._fire)

    def _fire(self) -> None:
        self._timer = None
        text, self._pending = self._pending, None
        if text is not None and not self._closed:
            self._enqueue(text, self._clock())

    def _enqueue(self, text: str, now: float) -> None:
        self._last_sent_at = now
        self._queue.put_nowait(text)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._run(), name=f"throttle-{self.name}" if self.name else None,
            )

    async def _run(self) -> None:
        while True:
            text = await self._queue.get()
            try:
                if not self._closed:
                    await self._deliver(text)
                    self.delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failed += 1
                logger.warning(
                    "Delivery failed for %s, continuing", self.name or "sink",
                    exc_info=True,
                )
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Send any scheduled value now and wait until the queue is empty."""
        if self._timer is not None:
            self._timer.cancel()
            self._fire()
        if self._worker is not None:
            await self._queue.join()

    def discard(self) -> None:
        """Drop scheduled and queued values and refuse further pushes."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = None
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()

    async def aclose(self) -> None:
        """Stop the worker. Call after drain() or discard()."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
