"""Checks a file before it is handed to the chat layer for delivery."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from agent_bridge.engine.config import MAX_FILE_BYTES
from agent_bridge.engine.errors import FileTooLargeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliverableFile:
    path: str
    name: str
    size: int

    def to_dict(self) -> dict:
        return {"file_path": self.path, "file_name": self.name, "file_size": self.size}


def resolve_path(file_path: str, work_dir: str) -> str:
    """Absolute path; relative paths are taken from *work_dir*."""
    expanded = os.path.expanduser(file_path)
    if not os.path.isabs(expanded):
        expanded = os.path.join(work_dir, expanded)
    return os.path.normpath(expanded)


def check_deliverable(path: str, max_bytes: int = MAX_FILE_BYTES) -> DeliverableFile:
    """Return file metadata if *path* can be sent.

    Raises FileNotFoundError for a missing (or non-regular) file and
    FileTooLargeError above *max_bytes*.
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"File not found: {path}")
    size = os.path.getsize(path)
    if size > max_bytes:
        logger.warning("Refusing %s: %d bytes > %d", path, size, max_bytes)
        raise FileTooLargeError(path, size, max_bytes)
    return DeliverableFile(path=path, name=os.path.basename(path), size=size)
