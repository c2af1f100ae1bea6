"""Tests for TaskManager: one task per channel, cancel and kill escalation."""
from __future__ import annotations

import asyncio
import signal
import sys

import pytest

from agent_bridge.engine.errors import (
    CancelledByUser,
    ChannelBusyError,
    ProcessSpawnError,
)
from agent_bridge.engine.launcher import AgentCommand
from agent_bridge.engine.task_manager import AgentTask, TaskManager

SLEEPER = AgentCommand(
    argv=[sys.executable, "-c", "import time; time.sleep(30)"],
    cwd=".",
)

STUBBORN = AgentCommand(
    argv=[
        sys.executable, "-c",
        "import signal, sys, time\n"
        "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        "print('ready', flush=True)\n"
        "time.sleep(30)\n",
    ],
    cwd=".",
)


async def _wait(task: AgentTask, timeout: float = 5.0) -> int:
    return await asyncio.wait_for(task.process.wait(), timeout=timeout)


@pytest.mark.asyncio
async def test_concurrent_spawns_exactly_one_wins():
    manager = TaskManager(kill_grace_seconds=0.2)
    results = await asyncio.gather(
        *(manager.spawn("chan", SLEEPER, f"try {i}") for i in range(5)),
        return_exceptions=True,
    )
    winners = [r for r in results if isinstance(r, AgentTask)]
    losers = [r for r in results if isinstance(r, ChannelBusyError)]
    assert len(winners) == 1
    assert len(losers) == 4
    assert manager.get("chan") is winners[0]

    manager.cancel("chan")
    await _wait(winners[0])


@pytest.mark.asyncio
async def test_channels_are_independent():
    manager = TaskManager(kill_grace_seconds=0.2)
    a = await manager.spawn("a", SLEEPER)
    b = await manager.spawn("b", SLEEPER)
    assert len(manager) == 2
    manager.cancel("a")
    manager.cancel("b")
    await _wait(a)
    await _wait(b)


@pytest.mark.asyncio
async def test_cancel_without_task():
    result = TaskManager().cancel("nobody")
    assert result.cancelled is False
    assert result.to_dict() == {"cancelled": False, "label": "", "elapsed_seconds": 0}


@pytest.mark.asyncio
async def test_cancel_removes_entry_before_process_exits():
    manager = TaskManager(kill_grace_seconds=0.2)
    task = await manager.spawn("chan", SLEEPER, "long job")

    result = manager.cancel("chan")
    assert result.cancelled is True
    assert result.label == "long job"
    assert task.cancelled is True
    assert not manager.is_active("chan")
    assert task.process.returncode is None

    assert await _wait(task) == -signal.SIGTERM


@pytest.mark.asyncio
async def test_cancel_escalates_to_sigkill():
    manager = TaskManager(kill_grace_seconds=0.3)
    task = await manager.spawn("chan", STUBBORN)
    line = await asyncio.wait_for(task.process.stdout.readline(), timeout=5)
    assert line.strip() == b"ready"

    manager.cancel("chan")
    assert await _wait(task) == -signal.SIGKILL


@pytest.mark.asyncio
async def test_on_exit_only_removes_its_own_task():
    manager = TaskManager(kill_grace_seconds=0.2)
    first = await manager.spawn("chan", SLEEPER)
    manager.cancel("chan")
    second = await manager.spawn("chan", SLEEPER)

    assert manager.on_exit("chan", first) is False
    assert manager.get("chan") is second
    assert manager.on_exit("chan", second) is True
    assert manager.on_exit("chan", second) is False
    assert not manager.is_active("chan")

    second.process.kill()
    await _wait(first)
    await _wait(second)


@pytest.mark.asyncio
async def test_spawn_failure_releases_slot():
    manager = TaskManager()
    bad = AgentCommand(argv=["/nonexistent/bin/agent-xyz"], cwd=".")
    with pytest.raises(ProcessSpawnError) as info:
        await manager.spawn("chan", bad)
    assert info.value.channel_key == "chan"
    assert not manager.is_active("chan")


@pytest.mark.asyncio
async def test_shutdown_stops_everything():
    manager = TaskManager(kill_grace_seconds=0.2)
    tasks = [await manager.spawn(key, SLEEPER) for key in ("a", "b")]
    await manager.shutdown()
    assert len(manager) == 0
    assert all(t.process.returncode is not None for t in tasks)


@pytest.mark.asyncio
async def test_reserve_claims_channel_before_launch():
    manager = TaskManager(kill_grace_seconds=0.2)
    task = manager.reserve("chan", "queued")
    assert manager.is_active("chan")
    with pytest.raises(ChannelBusyError) as info:
        manager.reserve("chan", "other")
    assert info.value.label == "queued"

    await manager.launch(task, SLEEPER)
    assert manager.get("chan") is task
    manager.cancel("chan")
    await _wait(task)


@pytest.mark.asyncio
async def test_cancelled_reservation_never_launches():
    manager = TaskManager()
    task = manager.reserve("chan", "queued")
    result = manager.cancel("chan")
    assert result.cancelled is True
    assert result.label == "queued"

    with pytest.raises(CancelledByUser):
        await manager.launch(task, SLEEPER)
    assert task.process is None
    assert not manager.is_active("chan")
