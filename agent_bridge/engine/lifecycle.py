"""Task orchestration state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    IDLE ──> SPAWNING ──> RUNNING ──┬──> COMPLETING ──> IDLE
                │                   │
                │                   ├──> CANCELLING ──> IDLE
                │                   │
                │                   └──> TIMED_OUT  ──> IDLE
                │
                └──> IDLE  (spawn failed)

    CANCELLING ──> TIMED_OUT  (the hard timeout wins over a cancel)
"""
from __future__ import annotations

from .models import TaskState

VALID_TRANSITIONS: dict[TaskState, set[TaskState]] = {
    TaskState.IDLE: {
        TaskState.SPAWNING,
    },
    TaskState.SPAWNING: {
        TaskState.RUNNING,
        TaskState.CANCELLING,
        TaskState.IDLE,
    },
    TaskState.RUNNING: {
        TaskState.COMPLETING,
        TaskState.CANCELLING,
        TaskState.TIMED_OUT,
    },
    TaskState.COMPLETING: {
        TaskState.IDLE,
    },
    TaskState.CANCELLING: {
        TaskState.TIMED_OUT,
        TaskState.IDLE,
    },
    TaskState.TIMED_OUT: {
        TaskState.IDLE,
    },
}


def validate_transition(current: TaskState, target: TaskState) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(sorted(s.value for s in allowed)) or "none"
        raise ValueError(
            f"Invalid task transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
