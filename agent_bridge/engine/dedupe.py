"""Short-lived memory of inbound event ids, to drop replays."""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class DedupeCache:
    """Event id -> expiry time. seen() both checks and records."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._expires: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._expires)

    def seen(self, event_id: str) -> bool:
        """Return True if *event_id* was already recorded and has not expired.

        Otherwise record it and return False.
        """
        now = self._clock()
        expires_at = self._expires.get(event_id)
        if expires_at is not None and expires_at > now:
            return True
        self._expires[event_id] = now + self.ttl_seconds
        return False

    def sweep(self) -> int:
        now = self._clock()
        stale = [key for key, exp in self._expires.items() if exp <= now]
        for key in stale:
            del self._expires[key]
        if stale:
            logger.debug("Dedupe sweep removed %d id(s)", len(stale))
        return len(stale)

    async def run_sweeper(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()
