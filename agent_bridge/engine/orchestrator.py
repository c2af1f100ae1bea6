"""Runs one prompt through the agent, end to end.

    snapshot(before) -> spawn -> parse stdout -> accumulate -> throttled
    card updates -> exit -> final card -> save session -> snapshot(after)

Each run walks the state machine in lifecycle.py. Outcomes:

- completed: final text delivered, session saved if one was observed,
  added/changed files reported.
- cancelled (TaskManager.cancel): pending updates dropped, no session
  saved, no error shown. Returns a CANCELLED TaskResult. A cancel that
  lands after the agent exited but before the session is saved counts too.
- timed out: process killed, a visible failure on the card, no session
  saved. Raises TaskTimeoutError, even if a cancel was also requested.
- failed: non-zero exit with no text raises ProcessExitError after
  marking the card failed.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any

from .accumulator import ResultAccumulator
from .config import BridgeConfig
from .errors import (
    BridgeError,
    CancelledByUser,
    ProcessExitError,
    TaskTimeoutError,
)
from .launcher import DEFAULT_MODE, build_agent_command
from .lifecycle import validate_transition
from .models import CancelResult, TaskOutcome, TaskResult, TaskState
from .session_store import SessionStore
from .snapshot import Snapshot, capture, diff
from .stream_parser import StreamParser
from .task_manager import AgentTask, TaskManager, kill_process
from .throttle import ThrottledSink

logger = logging.getLogger(__name__)

READ_CHUNK = 64 * 1024
STDERR_TAIL_LINES = 10
FINAL_UPDATE_TIMEOUT = 10.0


@dataclass(frozen=True)
class CardTitles:
    running: str
    done: str
    failed: str = "Failed"
    timed_out: str = "Timed out"


MODE_TITLES: dict[str, CardTitles] = {
    "agent": CardTitles(running="Working", done="Done"),
    "ask": CardTitles(running="Answering", done="Answered"),
    "plan": CardTitles(running="Planning", done="Plan ready"),
}


def titles_for(mode: str, title: str | None = None) -> CardTitles:
    base = MODE_TITLES.get(mode, MODE_TITLES[DEFAULT_MODE])
    if title:
        return CardTitles(running=title, done=base.done)
    return base


class TaskRun:
    """Tracks the state of one run and enforces legal transitions."""

    def __init__(self, channel_key: str) -> None:
        self.channel_key = channel_key
        self.state = TaskState.IDLE

    def transition(self, target: TaskState) -> None:
        validate_transition(self.state, target)
        logger.debug(
            "Task %s: %s -> %s", self.channel_key, self.state.value, target.value,
        )
        self.state = target


class Orchestrator:
    """Composition root for running agent tasks per channel."""

    def __init__(
        self,
        config: BridgeConfig | None = None,
        sessions: SessionStore | None = None,
        tasks: TaskManager | None = None,
    ) -> None:
        self.config = config or BridgeConfig.from_env()
        self.sessions = sessions or SessionStore(self.config.session_ttl_seconds)
        self.tasks = tasks or TaskManager(self.config.kill_grace_seconds)
        self._runs: dict[str, TaskRun] = {}

    def state_of(self, channel_key: str) -> TaskState:
        run = self._runs.get(channel_key)
        return run.state if run is not None else TaskState.IDLE

    def cancel(self, channel_key: str) -> CancelResult:
        return self.tasks.cancel(channel_key)

    def new_session(self, channel_key: str) -> bool:
        return self.sessions.clear(channel_key)

    def reserve(self, prompt: str, channel_key: str) -> AgentTask:
        """Claim *channel_key* for *prompt* before any await.

        Raises ChannelBusyError. Pass the result to run(reserved=...).
        """
        return self.tasks.reserve(channel_key, prompt[: self.config.prompt_label_chars])

    async def run(
        self,
        prompt: str,
        channel_key: str,
        sink: Any,
        *,
        mode: str = DEFAULT_MODE,
        title: str | None = None,
        reserved: AgentTask | None = None,
    ) -> TaskResult:
        """Run *prompt* for *channel_key*, streaming to *sink*.

        Raises ChannelBusyError, ProcessSpawnError, ProcessExitError or
        TaskTimeoutError. A cancelled task returns normally.
        """
        task = reserved if reserved is not None else self.reserve(prompt, channel_key)
        cfg = self.config
        started = time.monotonic()
        run = TaskRun(channel_key)
        try:
            before = await asyncio.to_thread(
                capture, cfg.work_dir, cfg.snapshot_max_depth,
            )
            session_id = self.sessions.get(channel_key)
            command = build_agent_command(cfg, session_id, mode)
            logger.info(
                "Starting task for %s (mode=%s, resume=%s): %s",
                channel_key, mode, session_id or "-", task.label,
            )

            run.transition(TaskState.SPAWNING)
            try:
                await self.tasks.launch(task, command)
            except CancelledByUser:
                run.transition(TaskState.CANCELLING)
                run.transition(TaskState.IDLE)
                return TaskResult(
                    channel_key=channel_key,
                    outcome=TaskOutcome.CANCELLED,
                    elapsed_seconds=time.monotonic() - started,
                )
            except BridgeError:
                run.transition(TaskState.IDLE)
                raise

            self._runs[channel_key] = run
            return await self._drive(
                run, task, prompt, sink, before, titles_for(mode, title), started,
            )
        finally:
            self.tasks.on_exit(channel_key, task)
            if self._runs.get(channel_key) is run:
                del self._runs[channel_key]
            proc = task.process
            if proc is not None and proc.returncode is None:
                kill_process(proc)

    async def _drive(
        self,
        run: TaskRun,
        task: AgentTask,
        prompt: str,
        sink: Any,
        before: Snapshot,
        titles: CardTitles,
        started: float,
    ) -> TaskResult:
        cfg = self.config
        key = task.channel_key
        proc = task.process

        handle = None

        async def deliver(text: str) -> None:
            if task.cancelled or handle is None:
                return
            await sink.update(handle, text, titles.running)

        throttle = ThrottledSink(deliver, cfg.throttle_interval_seconds, name=key)
        accumulator = ResultAccumulator(key)
        parser = StreamParser()
        stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

        async def start_and_pump() -> None:
            nonlocal handle
            try:
                handle = await sink.create("...", titles.running)
            except Exception:
                logger.warning("Could not create card for %s", key, exc_info=True)
            await self._write_prompt(proc, prompt)
            await self._pump(proc, parser, accumulator, throttle, task)

        run.transition(TaskState.RUNNING)
        stderr_task = asyncio.create_task(self._drain_stderr(proc, stderr_tail, key))

        # The clock starts at launch: card creation and the prompt write
        # count against the same deadline as reading the output.
        timeout = cfg.timeout_seconds if cfg.timeout_seconds > 0 else None
        timed_out = False
        try:
            try:
                await asyncio.wait_for(start_and_pump(), timeout=timeout)
            except asyncio.TimeoutError:
                timed_out = True

            if task.cancelled:
                run.transition(TaskState.CANCELLING)

            if timed_out:
                run.transition(TaskState.TIMED_OUT)
                kill_process(proc)
                await self._reap(proc)
                await throttle.drain()
                error = TaskTimeoutError(key, cfg.timeout_seconds)
                logger.warning("%s", error)
                await self._final_update(
                    sink, handle, _with_error(accumulator.text, str(error)),
                    titles.timed_out,
                )
                run.transition(TaskState.IDLE)
                raise error

            if task.cancelled:
                return self._cancelled(run, task, throttle, accumulator, started)

            run.transition(TaskState.COMPLETING)
            await _settle(stderr_task)
            if task.cancelled:
                return self._cancelled(run, task, throttle, accumulator, started)
            try:
                text = accumulator.finalize(proc.returncode, "\n".join(stderr_tail))
            except ProcessExitError as exc:
                await throttle.drain()
                logger.error("Task for %s failed: %s", key, exc)
                await self._final_update(sink, handle, str(exc), titles.failed)
                run.transition(TaskState.IDLE)
                raise

            throttle.push(text)
            await throttle.drain()
            if task.cancelled:
                return self._cancelled(run, task, throttle, accumulator, started)
            await self._final_update(sink, handle, text, titles.done)
            if task.cancelled:
                return self._cancelled(run, task, throttle, accumulator, started)

            # No await between save and release: a cancel either lands
            # before the save or finds the channel idle.
            if accumulator.session_id:
                self.sessions.save(key, accumulator.session_id)
            self.tasks.on_exit(key, task)

            after = await asyncio.to_thread(
                capture, cfg.work_dir, cfg.snapshot_max_depth,
            )
            changes = diff(before, after)
            run.transition(TaskState.IDLE)
            elapsed = time.monotonic() - started
            logger.info(
                "Task for %s completed in %.1fs (exit=%s, added=%d, changed=%d)",
                key, elapsed, proc.returncode,
                len(changes.added), len(changes.changed),
            )
            return TaskResult(
                channel_key=key,
                outcome=TaskOutcome.COMPLETED,
                text=text,
                session_id=accumulator.session_id,
                exit_code=proc.returncode,
                elapsed_seconds=elapsed,
                added_files=changes.added,
                changed_files=changes.changed,
            )
        finally:
            if not stderr_task.done():
                stderr_task.cancel()
            await throttle.aclose()

    @staticmethod
    def _cancelled(
        run: TaskRun,
        task: AgentTask,
        throttle: ThrottledSink,
        accumulator: ResultAccumulator,
        started: float,
    ) -> TaskResult:
        throttle.discard()
        run.transition(TaskState.IDLE)
        logger.info("Task for %s cancelled", task.channel_key)
        return TaskResult(
            channel_key=task.channel_key,
            outcome=TaskOutcome.CANCELLED,
            text=accumulator.text,
            exit_code=task.process.returncode if task.process else None,
            elapsed_seconds=time.monotonic() - started,
        )

    async def _pump(
        self,
        proc: asyncio.subprocess.Process,
        parser: StreamParser,
        accumulator: ResultAccumulator,
        throttle: ThrottledSink,
        task: AgentTask,
    ) -> None:
        """Read stdout to EOF, feeding records through to the throttle."""
        assert proc.stdout is not None
        while True:
            chunk = await proc.stdout.read(READ_CHUNK)
            records = parser.feed(chunk) if chunk else parser.flush()
            for record in records:
                if accumulator.apply(record) and not task.cancelled:
                    throttle.push(accumulator.text)
            if not chunk:
                break
        await proc.wait()

    @staticmethod
    async def _write_prompt(proc: asyncio.subprocess.Process, prompt: str) -> None:
        if proc.stdin is None:
            return
        try:
            proc.stdin.write(prompt.encode("utf-8"))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Agent closed stdin before the prompt was written")
        finally:
            proc.stdin.close()

    @staticmethod
    async def _drain_stderr(
        proc: asyncio.subprocess.Process,
        tail: deque[str],
        channel_key: str,
    ) -> None:
        if proc.stderr is None:
            return
        while True:
            line = await proc.stderr.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                tail.append(text)
                logger.info("[agent stderr %s] %s", channel_key, text)

    @staticmethod
    async def _reap(proc: asyncio.subprocess.Process) -> None:
        try:
            await asyncio.wait_for(proc.wait(), timeout=5.0)
        except asyncio.TimeoutError:
            logger.error("Agent pid=%s did not exit after SIGKILL", proc.pid)

    @staticmethod
    async def _final_update(sink: Any, handle: Any, text: str, title: str) -> None:
        try:
            if handle is None:
                call = sink.create(text, title)
            else:
                call = sink.update(handle, text, title)
            await asyncio.wait_for(call, timeout=FINAL_UPDATE_TIMEOUT)
        except Exception:
            logger.warning("Final card update failed (%s)", title, exc_info=True)


async def _settle(task: asyncio.Task, timeout: float = 1.0) -> None:
    """Give the stderr reader a moment to reach EOF."""
    try:
        await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
    except asyncio.TimeoutError:
        pass


def _with_error(text: str, error: str) -> str:
    return f"{text}\n\n{error}" if text else error
