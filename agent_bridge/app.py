"""Bridge server entry point.

    agent-bridge                      # serve on 127.0.0.1:3456
    agent-bridge --config bridge.yaml --port 4000 --cwd ~/project
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from agent_bridge.engine.config import BridgeConfig
from agent_bridge.engine.yaml_config import resolve_config

DEFAULT_LOG_FILE = Path.home() / ".agent-bridge" / "logs" / "bridge.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="agent-bridge",
        description="Stream an external agent CLI into chat channels",
    )
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument("--host", default=None, help="Bind address")
    parser.add_argument("--port", type=int, default=None, help="Bind port")
    parser.add_argument("--cwd", default=None, help="Agent working directory")
    parser.add_argument("--log-file", default=None, help="Rotating log file path")
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)


def configure_logging(level: str, log_file: str | Path | None) -> Path:
    """Rotating file log (2 MB x 5) plus stderr."""
    log_path = Path(log_file) if log_file else DEFAULT_LOG_FILE
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = RotatingFileHandler(
        log_path, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_path


def build_config(args: argparse.Namespace) -> BridgeConfig:
    config = resolve_config(args.config)
    if args.host:
        config.api_host = args.host
    if args.port:
        config.api_port = args.port
    if args.cwd:
        config.work_dir = os.path.abspath(os.path.expanduser(args.cwd))
    if args.log_file:
        config.log_file = args.log_file
    if args.verbose:
        config.log_level = "DEBUG"
    return config


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    config = build_config(args)
    log_path = configure_logging(config.log_level, config.log_file)
    logger = logging.getLogger(__name__)
    logger.info(
        "Starting agent bridge cwd=%s port=%s config=%s log=%s",
        config.work_dir, config.api_port, args.config or "<none>", log_path,
    )

    if config.reap_stale_processes:
        from agent_bridge.shared.process_cleanup import cleanup_stale_agent_processes

        reaped = cleanup_stale_agent_processes(agent_command=config.agent_command)
        if reaped:
            logger.warning("Reaped %d stale agent process(es) at startup", reaped)

    from agent_bridge.server.api import BridgeServer

    server = BridgeServer(config)
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
