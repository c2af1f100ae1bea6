"""Delivery sinks: where streamed text is rendered for the user.

A sink creates one card per task and updates it in place. The HTTP
server publishes card events to SSE subscribers; the one-shot CLI
prints to the terminal.
"""
from __future__ import annotations

import logging
import sys
from typing import Any, Protocol, TextIO, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class DeliverySink(Protocol):
    async def create(self, text: str, title: str) -> Any:
        """Create a card and return an opaque handle for later updates."""
        ...

    async def update(self, handle: Any, text: str, title: str) -> None:
        ...


class ConsoleSink:
    """Writes card updates to a text stream. Only the newest text is shown."""

    def __init__(self, stream: TextIO | None = None, show_partial: bool = True) -> None:
        self._stream = stream or sys.stderr
        self._show_partial = show_partial
        self._cards = 0
        self._shown: dict[int, int] = {}

    async def create(self, text: str, title: str) -> int:
        self._cards += 1
        handle = self._cards
        self._shown[handle] = 0
        self._stream.write(f"[{title}] {text}\n")
        self._stream.flush()
        return handle

    async def update(self, handle: int, text: str, title: str) -> None:
        if not self._show_partial:
            return
        # Only print what was appended since the last update when possible.
        seen = self._shown.get(handle, 0)
        if 0 < seen <= len(text):
            fresh = text[seen:]
        else:
            fresh = f"\n[{title}]\n{text}"
        self._shown[handle] = len(text)
        if fresh:
            self._stream.write(fresh)
            self._stream.flush()
