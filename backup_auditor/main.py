import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import Optional

from . import config
from .config import RunConfig
from .core import BackupAuditorApp
from .database.db import DBManager
from .database.ops import DBOperations
from .exceptions import BackupAuditorError, ConfigError, ReportError, StoreError
from .reporting import CatalogExporter

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_STORE = 2
EXIT_REPORT = 3
EXIT_CANCELLED = 130

def setup_logging(verbose: bool, log_file: Optional[Path] = None):
    """Sets up logging to the console and, optionally, a log file."""
    log_level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8", errors="backslashreplace"))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
        force=True,
    )

class CLIParser(argparse.ArgumentParser):
    """Usage errors exit with the configuration status, not argparse's 2."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_CONFIG, f"{self.prog}: error: {message}\n")

def parse_args(argv=None):
    p = CLIParser(
        prog="backup-auditor",
        description="Backup Auditor: check mirrored drives and indexes for silent corruption",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", help="Log every directory and file as it is processed")
    common.add_argument("--workers", type=int, default=config.DEFAULT_MAX_WORKERS, help="Parallel checksum workers (default: CPU count)")
    common.add_argument("--log-file", type=Path, default=None, help="Also write the log to this file")

    reporting = argparse.ArgumentParser(add_help=False)
    reporting.add_argument("-r", "--report", type=Path, nargs="?", const=Path(config.DEFAULT_REPORT_NAME), default=None,
                           help=f"Write the report to a file instead of the console (default name: {config.DEFAULT_REPORT_NAME})")
    reporting.add_argument("--report-matches", action="store_true", help="Also list files that match")
    reporting.add_argument("--skip-dirs-file", type=Path, default=None, help="File containing directories to ignore")

    database = argparse.ArgumentParser(add_help=False)
    database.add_argument("-b", "--db", type=Path, default=None,
                          help=f"Index database (default: ${config.DB_ENV_VAR}, then ./{config.DEFAULT_DB_NAME} for index)")

    sub = p.add_subparsers(dest="command", required=True)

    idx = sub.add_parser("index", parents=[common, reporting, database], help="Index a directory into the database")
    idx.add_argument("directory", type=Path, help="Directory to index")
    idx.add_argument("--no-update", action="store_true", help="Report changed files but leave their index entries alone")
    idx.add_argument("--remove-missing", action="store_true", help="Delete index entries for files no longer in the directory")

    cmp_ = sub.add_parser("compare", parents=[common, reporting], help="Compare two directories")
    cmp_.add_argument("base", type=Path, help="Base directory")
    cmp_.add_argument("other", type=Path, help="Directory checked against the base")
    cmp_.add_argument("-c", "--copy-on-diff", action="store_true",
                      help="Copy MISS and DIFF files from base over the other directory. Overwrites files, use with caution")
    cmp_.add_argument("--dry-run", action="store_true", help="With --copy-on-diff, log copies without performing them")

    val = sub.add_parser("validate", parents=[common, reporting, database], help="Validate a directory against the database")
    val.add_argument("directory", type=Path, help="Directory to validate")

    exp = sub.add_parser("export", parents=[common, database], help="Export the database to a CSV file")
    exp.add_argument("-o", "--output", type=Path, default=None, help="Output CSV (default: <date>_<db name>.csv)")

    return p.parse_args(argv)

def load_skip_dirs(skip_file: Optional[Path]) -> set[Path]:
    if not skip_file or not skip_file.exists():
        return set()

    skips = set()
    with skip_file.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#"):
                skips.add(Path(line))
    return skips

def resolve_db_path(cli_value: Optional[Path], required: bool) -> Path:
    """--db flag, then $BACKUP_DB, then ./backup.db (only when the index may be created)."""
    if cli_value:
        return cli_value
    env_value = os.environ.get(config.DB_ENV_VAR)
    if env_value:
        return Path(env_value)
    if required:
        raise ConfigError(f"Please specify a database with --db or ${config.DB_ENV_VAR}.")
    return Path(".") / config.DEFAULT_DB_NAME

def format_duration(seconds: float) -> str:
    ms = int(seconds * 1000)
    if ms < 1000:
        return f"{ms} ms"
    if ms < 60_000:
        return f"{ms // 1000} s"
    if ms < 3_600_000:
        return f"{ms // 60_000} min"
    return f"{ms // 3_600_000} h"

def build_config(args) -> RunConfig:
    skip_dirs = load_skip_dirs(getattr(args, "skip_dirs_file", None))
    common = dict(
        verbose=args.verbose,
        report_path=getattr(args, "report", None),
        report_matches=getattr(args, "report_matches", False),
        max_workers=args.workers,
        skip_dirs=frozenset(skip_dirs),
    )

    if args.command == "index":
        return RunConfig(
            root=args.directory,
            db_path=resolve_db_path(args.db, required=False),
            no_update=args.no_update,
            prune_missing=args.remove_missing,
            **common,
        )
    if args.command == "validate":
        db_path = resolve_db_path(args.db, required=True)
        if not db_path.is_file():
            raise ConfigError(f"Database not found at {db_path}.")
        return RunConfig(root=args.directory, db_path=db_path, **common)
    if args.command == "compare":
        return RunConfig(
            root=args.base,
            reference_root=args.other,
            copy_on_diff=args.copy_on_diff,
            dry_run=args.dry_run,
            **common,
        )
    raise ValueError(f"No run configuration for command {args.command!r}")

def run_export(args) -> int:
    db_path = resolve_db_path(args.db, required=True)
    if not db_path.is_file():
        raise ConfigError(f"Database not found at {db_path}.")

    output = args.output or CatalogExporter.default_name(db_path)
    db_manager = DBManager(db_path, read_only=True)
    with db_manager as conn:
        exporter = CatalogExporter(DBOperations(conn, db_manager.lock))
        return exporter.export_csv(output)

def run(args) -> int:
    if args.command == "export":
        rows = run_export(args)
        logging.info(f"Successfully exported {rows} files.")
        return EXIT_OK

    cfg = build_config(args)
    app = BackupAuditorApp(cfg)
    if args.command == "index":
        summary = app.index()
    elif args.command == "validate":
        summary = app.validate()
    else:
        summary = app.compare()

    if summary.skipped:
        logging.warning(f"{summary.skipped} files could not be read and were skipped.")
    logging.info(f"Successfully finished {args.command}: {summary.describe()}")
    return EXIT_OK

def main(argv=None) -> int:
    try:
        args = parse_args(argv)
    except SystemExit as e:
        # --help exits 0, usage errors exit EXIT_CONFIG
        return e.code if isinstance(e.code, int) else EXIT_CONFIG

    try:
        setup_logging(args.verbose, args.log_file)
    except OSError as e:
        setup_logging(args.verbose)
        logging.error(f"Cannot open log file {args.log_file}: {e}")
        return EXIT_CONFIG

    start = time.monotonic()
    logging.info(f"=== Backup Auditor: {args.command} ===")

    try:
        code = run(args)
    except ConfigError as e:
        logging.error(str(e))
        code = EXIT_CONFIG
    except StoreError as e:
        logging.error(f"Database error: {e}")
        code = EXIT_STORE
    except ReportError as e:
        logging.error(str(e))
        code = EXIT_REPORT
    except BackupAuditorError as e:
        logging.error(str(e))
        code = EXIT_CONFIG
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        code = EXIT_CANCELLED

    logging.info(f"Run lasted for {format_duration(time.monotonic() - start)}")
    return code

if __name__ == "__main__":
    sys.exit(main())
