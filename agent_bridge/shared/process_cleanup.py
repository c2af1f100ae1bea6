"""Best-effort cleanup for agent processes left behind by a crashed bridge.

Agents are started in their own session, so when the bridge dies
hard they are reparented to init and keep running. At startup we look
for stream-json agent invocations with no live parent and stop them.
"""

from __future__ import annotations

import logging
import os
import re
import signal
import subprocess
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    ppid: int
    args: str


def parse_process_table(output: str) -> dict[int, ProcessInfo]:
    """Parse `ps -eo pid=,ppid=,args=` output keyed by PID."""
    table: dict[int, ProcessInfo] = {}
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        parts = line.split(maxsplit=2)
        if len(parts) < 3:
            continue
        try:
            pid = int(parts[0])
            ppid = int(parts[1])
        except ValueError:
            continue
        table[pid] = ProcessInfo(pid=pid, ppid=ppid, args=parts[2])
    return table


def _list_processes() -> dict[int, ProcessInfo]:
    out = subprocess.check_output(
        ["ps", "-eo", "pid=,ppid=,args="],
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return parse_process_table(out)


def is_agent_candidate(args: str, agent_command: str = "agent") -> bool:
    """Match agent invocations the bridge makes."""
    name = re.escape(os.path.basename(agent_command))
    return bool(
        re.search(rf"(^|/){name}\b", args)
        and re.search(r"--output-format\s+stream-json", args)
    )


def find_stale_agents(
    table: dict[int, ProcessInfo],
    *,
    current_pid: int,
    agent_command: str = "agent",
) -> list[ProcessInfo]:
    """Orphaned agent processes: parent is PID 1 or missing."""
    stale = []
    for proc in table.values():
        if proc.pid == current_pid:
            continue
        if not is_agent_candidate(proc.args, agent_command):
            continue
        if proc.ppid == 1 or proc.ppid not in table:
            stale.append(proc)
    return stale


def cleanup_stale_agent_processes(
    *,
    agent_command: str = "agent",
    current_pid: int | None = None,
    list_processes: Callable[[], dict[int, ProcessInfo]] = _list_processes,
    kill: Callable[[int, int], None] = os.kill,
) -> int:
    """SIGTERM orphaned agent processes. Returns how many were signalled."""
    pid = current_pid or os.getpid()
    try:
        table = list_processes()
    except (OSError, subprocess.CalledProcessError) as exc:
        logger.warning("Could not list processes for cleanup: %s", exc)
        return 0

    killed = 0
    for proc in find_stale_agents(table, current_pid=pid, agent_command=agent_command):
        try:
            kill(proc.pid, signal.SIGTERM)
            killed += 1
            logger.info(
                "Reaped stale agent process pid=%d ppid=%d cmd=%s",
                proc.pid, proc.ppid, proc.args[:180],
            )
        except ProcessLookupError:
            continue
        except OSError as exc:
            logger.warning(
                "Failed to reap stale process pid=%d: %s: %s",
                proc.pid, type(exc).__name__, exc,
            )
    return killed
