import os
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Set


class EntryKind(Enum):
    FILE = "file"
    DIR_ENTER = "enter"
    DIR_LEAVE = "leave"


@dataclass(frozen=True)
class WalkEntry:
    kind: EntryKind
    path: Path


class DiskScanner:
    def walk(self, root: Path, skip_dirs: Optional[Set[Path]] = None) -> Iterator[WalkEntry]:
        """
        Depth-first walker using os.scandir for speed.

        Yields every regular file below `root`, bracketed by DIR_ENTER /
        DIR_LEAVE events for each sub-directory (never for `root` itself).
        Unreadable directories are logged and skipped, but still get their
        enter/leave pair. Symlinks are not followed.
        """
        skip_dirs = skip_dirs or set()
        root = Path(root)

        # Stack items: (path, is_leave_marker)
        stack = [(root, False)]
        while stack:
            current, is_leave = stack.pop()
            if is_leave:
                yield WalkEntry(EntryKind.DIR_LEAVE, current)
                continue

            if skip_dirs and any(sd == current or sd in current.parents for sd in skip_dirs):
                continue

            is_root = current == root
            if not is_root:
                yield WalkEntry(EntryKind.DIR_ENTER, current)
                stack.append((current, True))

            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError as e:
                logging.warning(f"Skipping unreadable directory {current}: {e}")
                continue

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name.lower())

            dirs = []
            for e in entries:
                try:
                    if e.is_dir(follow_symlinks=False):
                        dirs.append(Path(e.path))
                    elif e.is_file(follow_symlinks=False):
                        yield WalkEntry(EntryKind.FILE, Path(e.path))
                except OSError as err:
                    logging.warning(f"Cannot stat {e.path}: {err}")

            # Push dirs reversed so we process A before Z
            for d in reversed(dirs):
                stack.append((d, False))

    def iter_files(self, root: Path, skip_dirs: Optional[Set[Path]] = None) -> Iterator[Path]:
        """Yields only the files from walk()."""
        for entry in self.walk(root, skip_dirs):
            if entry.kind is EntryKind.FILE:
                yield entry.path
