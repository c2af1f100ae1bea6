"""Per-channel session ids with a sliding TTL.

Sessions live in memory only. A session older than the TTL is gone:
get() deletes it lazily, sweep() removes every expired entry at once.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from .models import Session

logger = logging.getLogger(__name__)


class SessionStore:
    """Channel key -> Session, with an injected clock."""

    def __init__(
        self,
        ttl_seconds: float = 10 * 60 * 60,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, channel_key: str) -> bool:
        return channel_key in self._sessions

    def _expired(self, session: Session, now: float) -> bool:
        return now - session.last_active > self.ttl_seconds

    def get(self, channel_key: str) -> str | None:
        """Return the live session id for a channel, refreshing it."""
        session = self._sessions.get(channel_key)
        if session is None:
            return None
        now = self._clock()
        if self._expired(session, now):
            del self._sessions[channel_key]
            logger.info(
                "Session for %s expired (idle %.0fs)",
                channel_key, now - session.last_active,
            )
            return None
        session.last_active = now
        return session.session_id

    def save(self, channel_key: str, session_id: str) -> None:
        self._sessions[channel_key] = Session(
            channel_key=channel_key,
            session_id=session_id,
            last_active=self._clock(),
        )
        logger.debug("Saved session %s for %s", session_id, channel_key)

    def clear(self, channel_key: str) -> bool:
        removed = self._sessions.pop(channel_key, None) is not None
        if removed:
            logger.info("Cleared session for %s", channel_key)
        return removed

    def sweep(self) -> int:
        """Remove all expired sessions. Returns how many were removed."""
        now = self._clock()
        expired = [
            key for key, session in self._sessions.items()
            if self._expired(session, now)
        ]
        for key in expired:
            del self._sessions[key]
        if expired:
            logger.info("Swept %d expired session(s)", len(expired))
        return len(expired)

    async def run_sweeper(self, interval: float) -> None:
        """Sweep every *interval* seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            self.sweep()
