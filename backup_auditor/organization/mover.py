import shutil
import logging
from pathlib import Path

from ..exceptions import FileOperationError


class FileCopier:
    """Copies primary files over their reference-side counterparts (copy on diff)."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def copy(self, src: Path, dest: Path):
        """
        Overwrites `dest` with the bytes of `src`, creating parent folders.
        Raises FileOperationError on failure.
        """
        if self.dry_run:
            logging.info(f"[DRY RUN] Copy {src} -> {dest}")
            return

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(src, dest)
        except OSError as e:
            raise FileOperationError(f"Failed to copy {src} -> {dest}: {e}") from e

        logging.debug(f"Copied {src} -> {dest}")
