"""Core data models for the bridge.

Enums and small dataclasses shared by the engine modules. Kept in one
place to avoid circular imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class TaskState(str, Enum):
    """Per-task orchestration states. See lifecycle.py for transitions."""
    IDLE = "idle"
    SPAWNING = "spawning"
    RUNNING = "running"
    COMPLETING = "completing"
    CANCELLING = "cancelling"
    TIMED_OUT = "timed_out"


class TaskOutcome(str, Enum):
    """How a task that did not raise ended."""
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RecordKind(str, Enum):
    """Classification of one decoded stream line."""
    SESSION_ID = "session_id"
    RESULT = "result"
    DELTA = "delta"
    FULL_TEXT = "full_text"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class StreamRecord:
    """A classified record from the agent's stdout. Never persisted."""
    kind: RecordKind
    value: str = ""


@dataclass
class Session:
    """Continuation token for a channel."""
    channel_key: str
    session_id: str
    last_active: float


@dataclass(frozen=True)
class CancelResult:
    cancelled: bool
    label: str = ""
    elapsed_seconds: int = 0

    def to_dict(self) -> dict:
        return {
            "cancelled": self.cancelled,
            "label": self.label,
            "elapsed_seconds": self.elapsed_seconds,
        }


@dataclass
class TaskResult:
    """Final result of one orchestrated task."""
    channel_key: str
    outcome: TaskOutcome
    text: str = ""
    session_id: str | None = None
    exit_code: int | None = None
    elapsed_seconds: float = 0.0
    added_files: list[str] = field(default_factory=list)
    changed_files: list[str] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return self.outcome == TaskOutcome.CANCELLED
