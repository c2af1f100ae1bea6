"""Stdio MCP server giving the agent file tools.

Configure the agent's MCP settings to launch it:

    python -m agent_bridge.mcp_server.stdio_server
    python -m agent_bridge.mcp_server.stdio_server --api-url http://127.0.0.1:3456

stdout is the MCP transport, so all logging goes to stderr.
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from agent_bridge.engine.config import BridgeConfig

logger = logging.getLogger(__name__)

# Parsed CLI args, set in main() before the server starts
_parsed_args: argparse.Namespace | None = None


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="agent-bridge-mcp",
        description="File tools MCP server for the agent bridge",
    )
    parser.add_argument(
        "--api-url",
        default=None,
        help="Bridge API base URL. Also reads BRIDGE_API_URL.",
    )
    parser.add_argument(
        "--cwd",
        default=None,
        help="Working directory for relative paths",
    )
    parser.add_argument(
        "--channel",
        default=None,
        help="Channel key files are sent to. Also reads BRIDGE_CHANNEL_KEY.",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)


def default_settings(args: argparse.Namespace | None = None) -> dict[str, str]:
    """Resolve api_url/work_dir/channel_key from args, then env, then config."""
    config = BridgeConfig.from_env()
    api_url = (
        getattr(args, "api_url", None)
        or os.getenv("BRIDGE_API_URL")
        or f"http://{config.api_host}:{config.api_port}"
    )
    work_dir = getattr(args, "cwd", None) or os.getcwd()
    channel_key = (
        getattr(args, "channel", None) or os.getenv("BRIDGE_CHANNEL_KEY") or ""
    )
    return {
        "api_url": api_url,
        "work_dir": os.path.abspath(work_dir),
        "channel_key": channel_key,
    }


@asynccontextmanager
async def bridge_tools_lifespan(server: FastMCP):
    """Yields settings dict accessible via ctx.request_context.lifespan_context."""
    settings = default_settings(_parsed_args)
    logger.info(
        "MCP file tools ready (api=%s, work_dir=%s)",
        settings["api_url"], settings["work_dir"],
    )
    yield settings
    logger.info("MCP file tools shutting down")


mcp = FastMCP(
    name="agent-bridge-files",
    instructions=(
        "File tools for the chat bridge. Use send_file to deliver a file "
        "you created to the user's chat, and list_files to check that a "
        "file exists before sending it."
    ),
    lifespan=bridge_tools_lifespan,
)

from .tools import register_tools  # noqa: E402

register_tools(mcp)


def main() -> None:
    """Entry point for the MCP server."""
    global _parsed_args
    _parsed_args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if _parsed_args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s",
        stream=sys.stderr,
    )
    logger.info("Starting stdio MCP server (pid=%s, argv=%s)", os.getpid(), sys.argv)
    try:
        mcp.run(transport="stdio")
    except Exception:
        logger.exception("Stdio MCP server crashed")
        raise


if __name__ == "__main__":
    main()
