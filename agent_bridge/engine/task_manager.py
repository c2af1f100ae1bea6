"""At most one live agent process per channel.

The map entry is the only record of "busy". reserve() claims the slot
synchronously and spawn() reserves before its first await, so two
concurrent starts for the same channel cannot both pass the check.
cancel() removes the entry at once, even though the process may take
up to the grace period to die.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass, field

from .errors import CancelledByUser, ChannelBusyError, ProcessSpawnError
from .launcher import AgentCommand
from .models import CancelResult

logger = logging.getLogger(__name__)


@dataclass
class AgentTask:
    """One in-flight agent execution for a channel."""
    channel_key: str
    label: str
    started_at: float = field(default_factory=time.monotonic)
    process: asyncio.subprocess.Process | None = None
    cancelled: bool = False

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started_at


def _signal_process(proc: asyncio.subprocess.Process, sig: int) -> bool:
    """Signal the process group, falling back to the process itself."""
    if proc.returncode is not None:
        return False
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, sig)
            return True
    except ProcessLookupError:
        return False
    except OSError:
        pass
    try:
        if sig == getattr(signal, "SIGKILL", None):
            proc.kill()
        else:
            proc.terminate()
        return True
    except ProcessLookupError:
        return False


def terminate_process(
    proc: asyncio.subprocess.Process,
    grace_seconds: float = 1.0,
) -> bool:
    """SIGTERM now, SIGKILL after *grace_seconds* if still alive."""
    sent = _signal_process(proc, signal.SIGTERM)
    if sent:
        logger.info("Sent SIGTERM to agent pid=%s", proc.pid)

        def _escalate() -> None:
            if proc.returncode is None:
                logger.warning(
                    "Agent pid=%s still alive after %.1fs, sending SIGKILL",
                    proc.pid, grace_seconds,
                )
                _signal_process(proc, getattr(signal, "SIGKILL", signal.SIGTERM))

        asyncio.get_running_loop().call_later(grace_seconds, _escalate)
    return sent


def kill_process(proc: asyncio.subprocess.Process) -> bool:
    return _signal_process(proc, getattr(signal, "SIGKILL", signal.SIGTERM))


class TaskManager:
    """Channel key -> the single in-flight AgentTask."""

    def __init__(self, kill_grace_seconds: float = 1.0) -> None:
        self.kill_grace_seconds = kill_grace_seconds
        self._tasks: dict[str, AgentTask] = {}

    def is_active(self, channel_key: str) -> bool:
        return channel_key in self._tasks

    def get(self, channel_key: str) -> AgentTask | None:
        return self._tasks.get(channel_key)

    def active_tasks(self) -> list[AgentTask]:
        return list(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)

    def reserve(self, channel_key: str, label: str = "") -> AgentTask:
        """Claim the channel without starting a process. Raises ChannelBusyError."""
        existing = self._tasks.get(channel_key)
        if existing is not None:
            raise ChannelBusyError(channel_key, existing.label)
        task = AgentTask(channel_key=channel_key, label=label)
        self._tasks[channel_key] = task
        return task

    async def spawn(
        self,
        channel_key: str,
        command: AgentCommand,
        label: str = "",
    ) -> AgentTask:
        """Start the agent for a channel. Raises ChannelBusyError if one runs."""
        task = self.reserve(channel_key, label)
        return await self.launch(task, command)

    async def launch(self, task: AgentTask, command: AgentCommand) -> AgentTask:
        """Start the process for a reserved *task*.

        Raises CancelledByUser if the reservation was cancelled first.
        """
        channel_key = task.channel_key
        if task.cancelled:
            raise CancelledByUser(channel_key)
        try:
            proc = await asyncio.create_subprocess_exec(
                *command.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=command.cwd,
                env=command.env or None,
                start_new_session=True,
            )
        except OSError as exc:
            self.on_exit(channel_key, task)
            logger.error(
                "Failed to spawn %s for %s: %s", command.argv[0], channel_key, exc,
            )
            raise ProcessSpawnError(channel_key, str(exc)) from exc

        task.process = proc
        logger.info(
            "Spawned agent pid=%s for %s: %s", proc.pid, channel_key, task.label,
        )
        if task.cancelled:
            terminate_process(proc, self.kill_grace_seconds)
            raise CancelledByUser(channel_key)
        return task

    def cancel(self, channel_key: str) -> CancelResult:
        """Stop the channel's task. The entry is gone when this returns."""
        task = self._tasks.pop(channel_key, None)
        if task is None:
            return CancelResult(cancelled=False)
        task.cancelled = True
        if task.process is not None:
            terminate_process(task.process, self.kill_grace_seconds)
        elapsed = int(task.elapsed_seconds)
        logger.info(
            "Cancelled task for %s after %ds: %s", channel_key, elapsed, task.label,
        )
        return CancelResult(cancelled=True, label=task.label, elapsed_seconds=elapsed)

    def on_exit(self, channel_key: str, task: AgentTask) -> bool:
        """Remove *task* if it is still the channel's entry. Idempotent."""
        if self._tasks.get(channel_key) is task:
            del self._tasks[channel_key]
            return True
        return False

    async def shutdown(self) -> None:
        """Terminate every running agent and wait briefly for them."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        procs = []
        for task in tasks:
            task.cancelled = True
            if task.process is not None and task.process.returncode is None:
                terminate_process(task.process, self.kill_grace_seconds)
                procs.append(task.process)
        if procs:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*(p.wait() for p in procs)),
                    timeout=self.kill_grace_seconds + 4.0,
                )
            except asyncio.TimeoutError:
                logger.warning("Some agent processes did not exit on shutdown")
        logger.info("TaskManager shut down (%d task(s) stopped)", len(tasks))
