"""File tools exposed to the agent over MCP.

send_file hands a file to the bridge API, which forwards it to the
chat channel. list_files helps the agent confirm a file exists first.
"""
from __future__ import annotations

import logging
import os
from typing import Any

import aiohttp
from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.exceptions import ToolError

from agent_bridge.adapters.file_delivery import resolve_path
from agent_bridge.engine.config import MAX_FILE_BYTES
from agent_bridge.shared.file_utils import format_listing, format_size, list_files

logger = logging.getLogger(__name__)

SEND_TIMEOUT_SECONDS = 60.0


async def send_file(
    api_url: str,
    work_dir: str,
    file_path: str,
    message: str = "",
    channel_key: str | None = None,
) -> str:
    """POST the file to the bridge's /send-file endpoint."""
    if not file_path:
        raise ToolError("file_path is required")
    path = resolve_path(file_path, work_dir)
    if not os.path.isfile(path):
        raise ToolError(f"File not found: {path}")

    payload: dict[str, Any] = {"file_path": path, "message": message}
    if channel_key:
        payload["channel_key"] = channel_key
    url = api_url.rstrip("/") + "/send-file"
    logger.info("send_file: %s -> %s", path, url)
    try:
        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=SEND_TIMEOUT_SECONDS),
        ) as session:
            async with session.post(url, json=payload) as resp:
                body = await resp.json(content_type=None)
    except (aiohttp.ClientError, TimeoutError) as exc:
        raise ToolError(f"Send failed: {exc}") from exc

    if not isinstance(body, dict) or not body.get("success"):
        error = body.get("error") if isinstance(body, dict) else body
        raise ToolError(f"Send failed: {error}")
    return (
        "File sent.\n"
        f"Name: {body.get('file_name')}\n"
        f"Size: {format_size(int(body.get('file_size') or 0))}"
    )


def list_directory(work_dir: str, directory: str | None = None, pattern: str = "") -> str:
    root = resolve_path(directory, work_dir) if directory else work_dir
    if not os.path.isdir(root):
        raise ToolError(f"Not a directory: {root}")
    return format_listing(list_files(root, pattern), pattern)


def _settings(ctx: Context | None) -> dict[str, str]:
    if ctx is not None:
        return ctx.request_context.lifespan_context
    from .stdio_server import default_settings
    return default_settings()


def register_tools(mcp: FastMCP) -> None:
    @mcp.tool(
        name="send_file",
        description=(
            "Send a local file to the chat the current task came from. "
            "Use this when the user asks you to produce a file and send it. "
            "Images, documents, code and other files are supported, up to "
            f"{MAX_FILE_BYTES // (1024 * 1024)}MB. Relative paths are taken "
            "from the working directory."
        ),
    )
    async def send_file_tool(
        file_path: str,
        message: str = "",
        ctx: Context = None,
    ) -> str:
        settings = _settings(ctx)
        return await send_file(
            settings["api_url"], settings["work_dir"], file_path, message,
            channel_key=settings.get("channel_key") or None,
        )

    @mcp.tool(
        name="list_files",
        description=(
            "List files under the working directory (or a given directory) "
            "to confirm a file exists. Optional pattern filters by name, "
            "case-insensitive. Shows at most 30 files."
        ),
    )
    async def list_files_tool(
        directory: str | None = None,
        pattern: str = "",
        ctx: Context = None,
    ) -> str:
        settings = _settings(ctx)
        return list_directory(settings["work_dir"], directory, pattern)
