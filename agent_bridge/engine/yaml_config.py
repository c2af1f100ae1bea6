"""YAML configuration loader.

Overlays a single YAML file on top of BridgeConfig.from_env(). When no
YAML is provided, env vars work exactly as before.

Example YAML:
    agent:
      command: agent
      args: [-p, --force, --output-format, stream-json, --stream-partial-output]
      work_dir: /path/to/project
      timeout_seconds: 600
      extra_path: /opt/homebrew/bin

    streaming:
      throttle_interval_seconds: 1.5

    sessions:
      ttl_seconds: 36000
      sweep_interval_seconds: 600

    dedupe:
      ttl_seconds: 300

    files:
      max_bytes: 31457280
      snapshot_max_depth: 3

    server:
      host: 127.0.0.1
      port: 3456

    logging:
      level: INFO
      file: ~/.agent-bridge/logs/bridge.log
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from .config import BridgeConfig

logger = logging.getLogger(__name__)

# section -> {yaml key: (BridgeConfig attribute, converter)}
_SECTIONS: dict[str, dict[str, tuple[str, Any]]] = {
    "agent": {
        "command": ("agent_command", str),
        "args": ("agent_args", lambda v: [str(a) for a in v]),
        "resume_flag": ("resume_flag", str),
        "mode_flag": ("mode_flag", lambda v: str(v or "")),
        "work_dir": ("work_dir", lambda v: os.path.expanduser(str(v))),
        "extra_path": ("extra_path", str),
        "strip_env": ("strip_env", lambda v: [str(a) for a in v]),
        "timeout_seconds": ("timeout_seconds", float),
        "kill_grace_seconds": ("kill_grace_seconds", float),
        "prompt_label_chars": ("prompt_label_chars", int),
    },
    "streaming": {
        "throttle_interval_seconds": ("throttle_interval_seconds", float),
    },
    "sessions": {
        "ttl_seconds": ("session_ttl_seconds", float),
        "sweep_interval_seconds": ("session_sweep_interval_seconds", float),
    },
    "dedupe": {
        "ttl_seconds": ("dedupe_ttl_seconds", float),
    },
    "files": {
        "max_bytes": ("max_file_bytes", int),
        "snapshot_max_depth": ("snapshot_max_depth", int),
    },
    "server": {
        "host": ("api_host", str),
        "port": ("api_port", int),
        "reap_stale_processes": ("reap_stale_processes", bool),
    },
    "logging": {
        "level": ("log_level", lambda v: str(v).upper()),
        "file": ("log_file", lambda v: os.path.expanduser(str(v)) if v else None),
    },
}


def load_yaml_config(
    path: str | Path,
    base: BridgeConfig | None = None,
) -> BridgeConfig:
    """Load a YAML file and apply it over *base* (default: from_env())."""
    path = Path(path)
    logger.info(
        "load_yaml_config: loading %s (exists=%s)", path, path.exists()
    )
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s", path.absolute()
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"Top level of {path} must be a mapping")

    config = base if base is not None else BridgeConfig.from_env()
    return apply_yaml_sections(config, raw, source=path.name)


def apply_yaml_sections(
    config: BridgeConfig,
    raw: dict[str, Any],
    source: str = "<yaml>",
) -> BridgeConfig:
    """Apply parsed YAML sections onto *config* in place and return it."""
    for section, values in raw.items():
        known = _SECTIONS.get(section)
        if known is None:
            logger.warning("%s: ignoring unknown section %r", source, section)
            continue
        if not isinstance(values, dict):
            logger.warning("%s: section %r is not a mapping, ignored", source, section)
            continue
        for key, value in values.items():
            target = known.get(key)
            if target is None:
                logger.warning("%s: ignoring unknown key %s.%s", source, section, key)
                continue
            attr, convert = target
            setattr(config, attr, convert(value))
            logger.debug("%s: %s.%s -> %s", source, section, key, attr)
    return config


def resolve_config(path: str | None = None) -> BridgeConfig:
    """Config from *path*, else BRIDGE_CONFIG_FILE, else env vars only."""
    path = path or os.getenv("BRIDGE_CONFIG_FILE")
    if path:
        return load_yaml_config(path)
    return BridgeConfig.from_env()
