"""
Configuration constants and the run configuration for the backup auditor.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Optional

from .exceptions import ConfigError

# --- Checksums ---
CHECKSUM_BUFFER_SIZE = 64 * 1024  # 64 KB read buffer, reused per thread

# --- Database ---
DB_ENV_VAR = "BACKUP_DB"
DEFAULT_DB_NAME = "backup.db"
PAGE_SIZE = 100  # Records per page when enumerating the index

# --- Reports ---
DEFAULT_REPORT_NAME = "report.txt"
REPORT_RULE_WIDTH = 60

# --- Export ---
EXPORT_FILE_DATE_FORMAT = "%Y-%m-%d"
EXPORT_DATA_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# --- Concurrency ---
DEFAULT_MAX_WORKERS = max(1, os.cpu_count() or 1)


@dataclass(frozen=True)
class RunConfig:
    """
    Resolved settings for a single reconciliation run.

    The CLI builds one of these from its arguments; library callers can
    construct it directly. Defaults are applied here and nowhere else.
    """
    root: Path
    reference_root: Optional[Path] = None
    db_path: Optional[Path] = None
    report_path: Optional[Path] = None

    verbose: bool = False
    prune_missing: bool = False
    no_update: bool = False
    copy_on_diff: bool = False
    dry_run: bool = False
    report_matches: bool = False

    max_workers: int = DEFAULT_MAX_WORKERS
    skip_dirs: FrozenSet[Path] = field(default_factory=frozenset)

    def __post_init__(self):
        # Normalize once so every consumer sees absolute paths
        object.__setattr__(self, "root", Path(self.root).absolute())
        if self.reference_root is not None:
            object.__setattr__(self, "reference_root", Path(self.reference_root).absolute())
        if self.db_path is not None:
            object.__setattr__(self, "db_path", Path(self.db_path))
        if self.report_path is not None:
            object.__setattr__(self, "report_path", Path(self.report_path))
        object.__setattr__(self, "skip_dirs", frozenset(Path(p).absolute() for p in self.skip_dirs))
        if self.max_workers < 1:
            raise ConfigError(f"Worker count must be at least 1, got {self.max_workers}")

    def check_roots(self):
        """Raises ConfigError unless every configured root is an existing directory."""
        if not self.root.is_dir():
            raise ConfigError(f"Directory does not exist or is not a directory: {self.root}")
        if self.reference_root is not None and not self.reference_root.is_dir():
            raise ConfigError(f"Directory does not exist or is not a directory: {self.reference_root}")
