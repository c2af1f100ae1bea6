"""Exception hierarchy for the bridge.

One exception per failure mode of a task. Callers decide which ones
are user-visible; CancelledByUser never is.
"""
from __future__ import annotations


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class ChannelBusyError(BridgeError):
    """A task is already active for this channel."""
    def __init__(self, channel_key: str, label: str = ""):
        self.channel_key = channel_key
        self.label = label
        detail = f" ({label})" if label else ""
        super().__init__(
            f"Channel {channel_key} already has an active task{detail}"
        )


class ProcessSpawnError(BridgeError):
    """The agent process could not be started."""
    def __init__(self, channel_key: str, reason: str):
        self.channel_key = channel_key
        self.reason = reason
        super().__init__(
            f"Failed to start agent for channel {channel_key}: {reason}"
        )


class ProcessExitError(BridgeError):
    """Agent exited with a non-zero code and produced no usable text."""
    def __init__(self, channel_key: str, exit_code: int | None, stderr_tail: str = ""):
        self.channel_key = channel_key
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail
        message = f"Agent exited with code {exit_code}"
        if stderr_tail:
            message = f"{message}: {stderr_tail}"
        super().__init__(message)


class TaskTimeoutError(BridgeError, TimeoutError):
    """Task exceeded its hard wall-clock limit and was killed."""
    def __init__(self, channel_key: str, timeout_seconds: float):
        self.channel_key = channel_key
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Task for channel {channel_key} timed out after "
            f"{timeout_seconds:g}s"
        )


class CancelledByUser(BridgeError):
    """Task was stopped on request. Not a failure."""
    def __init__(self, channel_key: str):
        self.channel_key = channel_key
        super().__init__(f"Task for channel {channel_key} was cancelled")


class FileTooLargeError(BridgeError):
    """File exceeds the delivery size limit."""
    def __init__(self, path: str, size: int, limit: int):
        self.path = path
        self.size = size
        self.limit = limit
        super().__init__(
            f"File {path} is {size} bytes, above the {limit} byte limit"
        )
