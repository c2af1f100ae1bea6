"""Builds the agent command line, environment and working directory."""
from __future__ import annotations

import os
from dataclasses import dataclass, field

from .config import BridgeConfig

DEFAULT_MODE = "agent"


@dataclass
class AgentCommand:
    argv: list[str]
    cwd: str
    env: dict[str, str] = field(default_factory=dict)


def build_agent_command(
    config: BridgeConfig,
    session_id: str | None = None,
    mode: str = DEFAULT_MODE,
) -> AgentCommand:
    """Assemble argv/env for one agent invocation.

    ``--resume <id>`` is added when a session exists. A mode other than
    the default is passed with the configured mode flag.
    """
    argv = [config.agent_command, *config.agent_args]
    if session_id and config.resume_flag:
        argv += [config.resume_flag, session_id]
    if mode and mode != DEFAULT_MODE and config.mode_flag:
        argv += [config.mode_flag, mode]
    return AgentCommand(
        argv=argv,
        cwd=config.work_dir,
        env=build_agent_env(config),
    )


def build_agent_env(
    config: BridgeConfig,
    base: dict[str, str] | None = None,
) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    for name in config.strip_env:
        env.pop(name, None)
    if config.extra_path:
        current = env.get("PATH", "")
        env["PATH"] = (
            f"{config.extra_path}{os.pathsep}{current}" if current
            else config.extra_path
        )
    return env
