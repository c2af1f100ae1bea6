"""Agent bridge engine: run an external agent CLI per chat channel and stream its output."""
from .models import (
    CancelResult,
    RecordKind,
    Session,
    StreamRecord,
    TaskOutcome,
    TaskResult,
    TaskState,
)
from .config import BridgeConfig
from .errors import (
    BridgeError,
    CancelledByUser,
    ChannelBusyError,
    FileTooLargeError,
    ProcessExitError,
    ProcessSpawnError,
    TaskTimeoutError,
)
from .accumulator import ResultAccumulator
from .dedupe import DedupeCache
from .orchestrator import Orchestrator
from .session_store import SessionStore
from .snapshot import Snapshot, SnapshotDiff
from .stream_parser import StreamParser
from .task_manager import AgentTask, TaskManager
from .throttle import ThrottledSink

__all__ = [
    "Orchestrator",
    # Components
    "AgentTask",
    "DedupeCache",
    "ResultAccumulator",
    "SessionStore",
    "Snapshot",
    "SnapshotDiff",
    "StreamParser",
    "TaskManager",
    "ThrottledSink",
    # Models
    "CancelResult",
    "RecordKind",
    "Session",
    "StreamRecord",
    "TaskOutcome",
    "TaskResult",
    "TaskState",
    # Config
    "BridgeConfig",
    # Errors
    "BridgeError",
    "CancelledByUser",
    "ChannelBusyError",
    "FileTooLargeError",
    "ProcessExitError",
    "ProcessSpawnError",
    "TaskTimeoutError",
]
