"""Before/after metadata snapshots of the working directory.

A snapshot records (size, mtime) for every regular file within a
bounded depth of the root. Diffing two snapshots reports files that
appeared and files whose size or mtime moved. Removed files are not
reported.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from agent_bridge.shared.file_utils import walk_files

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileStat:
    size: int
    mtime: float


@dataclass(frozen=True)
class Snapshot:
    """Immutable map of absolute path -> FileStat."""
    root: str
    entries: Mapping[str, FileStat] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, path: str) -> bool:
        return path in self.entries


@dataclass
class SnapshotDiff:
    added: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.added or self.changed)


def capture(root: str, max_depth: int = 3) -> Snapshot:
    """Walk *root* and record metadata. Blocking; run in a thread."""
    entries = {
        path: FileStat(size=st.st_size, mtime=st.st_mtime)
        for path, st in walk_files(root, max_depth)
    }
    logger.debug("Captured %d file(s) under %s", len(entries), root)
    return Snapshot(root=root, entries=entries)


def diff(before: Snapshot, after: Snapshot) -> SnapshotDiff:
    """Paths present only in *after* and paths whose metadata changed."""
    added = []
    changed = []
    for path, stat in after.entries.items():
        prev = before.entries.get(path)
        if prev is None:
            added.append(path)
        elif prev != stat:
            changed.append(path)
    return SnapshotDiff(added=sorted(added), changed=sorted(changed))
