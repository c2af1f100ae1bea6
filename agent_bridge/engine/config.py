"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via BRIDGE_* env vars.
Older CURSOR_WORK_DIR, CURSOR_TIMEOUT (milliseconds)
and RIPGREP_PATH are honoured as fallbacks.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = 30 * 1024 * 1024


def _default_agent_args() -> list[str]:
    return [
        "-p",
        "--force",
        "--output-format", "stream-json",
        "--stream-partial-output",
    ]


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class BridgeConfig:
    """Bridge configuration."""

    # Agent process
    agent_command: str = "agent"
    agent_args: list[str] = field(default_factory=_default_agent_args)
    resume_flag: str = "--resume"
    # Flag used to pass a non-default mode (ask, plan). Empty disables it.
    mode_flag: str = "--mode"
    work_dir: str = field(default_factory=os.getcwd)
    # Prepended to PATH for the agent (e.g. where ripgrep lives).
    extra_path: str = ""
    # Variables removed from the agent's environment so it does not
    # believe it is running nested inside another agent.
    strip_env: list[str] = field(
        default_factory=lambda: ["CURSOR_CLI", "CURSOR_AGENT"]
    )

    # Timing
    # Hard wall-clock limit per task. 0 (or negative) disables it.
    timeout_seconds: float = 300.0
    kill_grace_seconds: float = 1.0
    throttle_interval_seconds: float = 1.5

    # Sessions and inbound dedupe
    session_ttl_seconds: float = 10 * 60 * 60
    session_sweep_interval_seconds: float = 600.0
    dedupe_ttl_seconds: float = 300.0

    # Files
    snapshot_max_depth: int = 3
    max_file_bytes: int = MAX_FILE_BYTES

    # Diagnostics label length (prompt truncation)
    prompt_label_chars: int = 50

    # HTTP API
    api_host: str = "127.0.0.1"
    api_port: int = 3456

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None

    # Reap orphaned agent processes at server startup.
    reap_stale_processes: bool = False

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Load configuration from BRIDGE_* environment variables."""
        bridge_vars = sorted(k for k in os.environ if k.startswith("BRIDGE_"))
        if bridge_vars:
            logger.info(
                "BridgeConfig.from_env: BRIDGE_* env overrides: %s",
                ", ".join(bridge_vars),
            )
        else:
            logger.debug("BridgeConfig.from_env: no BRIDGE_* env vars set, using defaults")

        defaults = cls()

        timeout = float(os.getenv("BRIDGE_TIMEOUT", "0") or 0)
        if not timeout and os.getenv("CURSOR_TIMEOUT"):
            timeout = float(os.environ["CURSOR_TIMEOUT"]) / 1000.0
        if not timeout:
            timeout = defaults.timeout_seconds

        agent_args_raw = os.getenv("BRIDGE_AGENT_ARGS")
        agent_args = (
            agent_args_raw.split() if agent_args_raw is not None
            else defaults.agent_args
        )

        config = cls(
            agent_command=os.getenv("BRIDGE_AGENT_COMMAND", defaults.agent_command),
            agent_args=agent_args,
            resume_flag=os.getenv("BRIDGE_RESUME_FLAG", defaults.resume_flag),
            mode_flag=os.getenv("BRIDGE_MODE_FLAG", defaults.mode_flag),
            work_dir=(
                os.getenv("BRIDGE_WORK_DIR")
                or os.getenv("CURSOR_WORK_DIR")
                or defaults.work_dir
            ),
            extra_path=(
                os.getenv("BRIDGE_EXTRA_PATH")
                or os.getenv("RIPGREP_PATH")
                or ""
            ),
            timeout_seconds=timeout,
            kill_grace_seconds=float(os.getenv(
                "BRIDGE_KILL_GRACE", str(defaults.kill_grace_seconds)
            )),
            throttle_interval_seconds=float(os.getenv(
                "BRIDGE_THROTTLE_INTERVAL",
                str(defaults.throttle_interval_seconds),
            )),
            session_ttl_seconds=float(os.getenv(
                "BRIDGE_SESSION_TTL", str(defaults.session_ttl_seconds)
            )),
            session_sweep_interval_seconds=float(os.getenv(
                "BRIDGE_SESSION_SWEEP_INTERVAL",
                str(defaults.session_sweep_interval_seconds),
            )),
            dedupe_ttl_seconds=float(os.getenv(
                "BRIDGE_DEDUPE_TTL", str(defaults.dedupe_ttl_seconds)
            )),
            snapshot_max_depth=int(os.getenv(
                "BRIDGE_SNAPSHOT_DEPTH", str(defaults.snapshot_max_depth)
            )),
            max_file_bytes=int(os.getenv(
                "BRIDGE_MAX_FILE_BYTES", str(defaults.max_file_bytes)
            )),
            api_host=os.getenv("BRIDGE_API_HOST", defaults.api_host),
            api_port=int(os.getenv("BRIDGE_API_PORT", str(defaults.api_port))),
            log_level=os.getenv("BRIDGE_LOG_LEVEL", defaults.log_level),
            log_file=os.getenv("BRIDGE_LOG_FILE") or None,
            reap_stale_processes=_env_bool("BRIDGE_REAP_STALE"),
        )
        logger.info(
            "BridgeConfig.from_env: agent=%s work_dir=%s timeout=%.0fs throttle=%.2fs",
            config.agent_command, config.work_dir,
            config.timeout_seconds, config.throttle_interval_seconds,
        )
        return config
