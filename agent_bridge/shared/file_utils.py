"""File utilities shared by the snapshot differ, the API and the MCP tools.

Provides:
- SKIP_DIRS: dependency/cache directories never worth walking
- walk_files: bounded-depth scandir walk yielding (path, stat)
- list_files: filtered listing used by the list_files MCP tool
- format_size: human-readable byte counts
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from dataclasses import dataclass


SKIP_DIRS: set[str] = {
    ".git", "node_modules", "__pycache__", ".venv", "venv",
    "target", "build", "dist", ".tox", ".mypy_cache",
    ".pytest_cache", ".ruff_cache", ".eggs",
}

LIST_LIMIT: int = 30


@dataclass
class FileEntry:
    """A single file found by list_files()."""

    name: str
    path: str  # Absolute
    size: int


def _skipped(name: str) -> bool:
    return name.startswith(".") or name in SKIP_DIRS


def walk_files(
    root: str,
    max_depth: int = 3,
    _depth: int = 0,
) -> Iterator[tuple[str, os.stat_result]]:
    """Yield (absolute path, stat) for regular files under *root*.

    Directories deeper than *max_depth* below root are not entered.
    Hidden entries and SKIP_DIRS are skipped, symlinks are not
    followed, and unreadable subtrees are silently left out.
    """
    if _depth > max_depth:
        return
    try:
        with os.scandir(root) as it:
            entries = list(it)
    except OSError:
        return
    for entry in entries:
        if _skipped(entry.name):
            continue
        try:
            if entry.is_dir(follow_symlinks=False):
                yield from walk_files(entry.path, max_depth, _depth + 1)
            elif entry.is_file(follow_symlinks=False):
                yield entry.path, entry.stat(follow_symlinks=False)
        except OSError:
            continue


def list_files(
    directory: str,
    pattern: str = "",
    max_depth: int = 3,
) -> list[FileEntry]:
    """Files under *directory* whose name contains *pattern* (case-insensitive)."""
    needle = pattern.lower()
    found: list[FileEntry] = []
    for path, st in walk_files(os.path.abspath(directory), max_depth):
        name = os.path.basename(path)
        if needle and needle not in name.lower():
            continue
        found.append(FileEntry(name=name, path=path, size=st.st_size))
    found.sort(key=lambda f: f.path)
    return found


def format_listing(files: list[FileEntry], pattern: str = "") -> str:
    """Render list_files() output, capped at LIST_LIMIT lines."""
    if not files:
        return f'No files matching "{pattern}"' if pattern else "Directory is empty"
    header = f"Found {len(files)} file(s)"
    if pattern:
        header += f" (matching: {pattern})"
    lines = [f"{f.path} ({format_size(f.size)})" for f in files[:LIST_LIMIT]]
    text = header + ":\n\n" + "\n".join(lines)
    if len(files) > LIST_LIMIT:
        text += f"\n\n... {len(files) - LIST_LIMIT} more"
    return text


def format_size(size: int) -> str:
    """Format a file size for display."""
    if size < 1024:
        return f"{size}B"
    elif size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    else:
        return f"{size / (1024 * 1024):.1f}MB"
