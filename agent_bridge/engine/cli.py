"""Run a single prompt through the bridge from a terminal.

Usage:
    python -m agent_bridge.engine.cli "Add a README section on setup"
    python -m agent_bridge.engine.cli --mode ask "What does main.py do?"
    python -m agent_bridge.engine.cli --config bridge.yaml --cwd ~/proj "Fix the tests"
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from agent_bridge.adapters.sink import ConsoleSink

from .errors import BridgeError
from .orchestrator import MODE_TITLES, Orchestrator
from .yaml_config import resolve_config


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="agent-bridge-run",
        description="Run one prompt through the agent and stream its output",
    )
    parser.add_argument(
        "prompt",
        help="The prompt to send to the agent",
    )
    parser.add_argument(
        "--channel",
        default="cli",
        help="Channel key used for session continuity (default: cli)",
    )
    parser.add_argument(
        "--mode",
        choices=sorted(MODE_TITLES),
        default="agent",
        help="Agent mode (default: agent)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="YAML config file. Also reads BRIDGE_CONFIG_FILE.",
    )
    parser.add_argument(
        "--cwd",
        default=None,
        help="Working directory for the agent (default: from config)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Hard timeout in seconds (default: 300)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )

    config = resolve_config(args.config)
    if args.cwd is not None:
        config.work_dir = args.cwd
    if args.timeout is not None:
        config.timeout_seconds = args.timeout

    orchestrator = Orchestrator(config)
    sink = ConsoleSink(sys.stderr)

    try:
        result = asyncio.run(
            orchestrator.run(args.prompt, args.channel, sink, mode=args.mode)
        )
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    except BridgeError as exc:
        print(f"\nError: {exc}", file=sys.stderr)
        return 1

    if result.cancelled:
        print("\nCancelled.")
        return 1
    print("\n=== Result ===\n")
    print(result.text)
    for label, paths in (("Added", result.added_files), ("Changed", result.changed_files)):
        if paths:
            print(f"\n{label} files:")
            for path in paths:
                print(f"  {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
