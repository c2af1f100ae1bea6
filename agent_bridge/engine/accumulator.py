"""Folds stream records into the best-known response text."""
from __future__ import annotations

from .errors import ProcessExitError
from .models import RecordKind, StreamRecord

NO_OUTPUT_TEXT = "Task completed with no output."


class ResultAccumulator:
    """Tracks the running text, the final result and the session id.

    Deltas append, full-text records replace, and a result record
    replaces the accumulation and wins at exit.
    """

    def __init__(self, channel_key: str = "") -> None:
        self.channel_key = channel_key
        self.text = ""
        self.result: str | None = None
        self.session_id: str | None = None

    def apply(self, record: StreamRecord) -> bool:
        """Apply one record. Returns True if the visible text changed."""
        if record.kind == RecordKind.SESSION_ID:
            self.session_id = record.value
            return False
        if record.kind == RecordKind.RESULT:
            self.result = record.value
            changed = record.value != self.text
            self.text = record.value
            return changed
        if record.kind == RecordKind.DELTA:
            if not record.value:
                return False
            self.text += record.value
            return True
        if record.kind == RecordKind.FULL_TEXT:
            changed = record.value != self.text
            self.text = record.value
            return changed
        return False

    def finalize(self, exit_code: int | None, stderr_tail: str = "") -> str:
        """Final text for a process that exited with *exit_code*.

        Raises ProcessExitError when the process failed and nothing
        usable was produced.
        """
        if self.result:
            return self.result
        if self.text:
            return self.text
        if exit_code == 0:
            return NO_OUTPUT_TEXT
        raise ProcessExitError(self.channel_key, exit_code, stderr_tail)
