import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Set

from tqdm import tqdm

from .config import RunConfig
from .database.db import DBManager
from .database.ops import DBOperations
from .exceptions import ConfigError, FileHashError, FileOperationError, StoreError
from .models import FileRecord, Outcome, ReportEvent, RunSummary
from .organization.mover import FileCopier
from .reference import ReferenceSet, StoreReference, TreeReference
from .reporting import ReportSink, open_report
from .scanning.classifier import Classifier, MimeClassifier
from .scanning.filesystem import DiskScanner, EntryKind
from .scanning.hasher import FileHasher
from .scanning.paths import key_to_path, relative_key
from .scanning.scheduler import TaskScheduler


class Reconciler:
    """
    Merges a live walk of a primary tree against a reference set.

    Each file is looked up by key and classified MATCH / DIFF / MISS. The
    post-passes (report_extra, report_missing, prune_unmatched) cover the
    keys that exist only on the reference side. Classification of a key
    depends only on that key, so the order in which workers finish does not
    change the result.
    """

    def __init__(self,
                 reference: ReferenceSet,
                 sink: ReportSink,
                 hasher: FileHasher,
                 classifier: Classifier,
                 scheduler: TaskScheduler,
                 *,
                 scanner: Optional[DiskScanner] = None,
                 mover: Optional[FileCopier] = None,
                 update: bool = False,
                 copy_on_diff: bool = False,
                 prune: bool = False,
                 report_matches: bool = False,
                 verbose: bool = False):
        if update and not reference.is_persistent:
            raise ValueError("Update mode requires a persistent reference")
        if prune and not reference.is_persistent:
            raise ValueError("Prune mode requires a persistent reference")
        if copy_on_diff and not isinstance(reference, TreeReference):
            raise ValueError("Copy on diff requires a directory reference")

        self.reference = reference
        self.sink = sink
        self.hasher = hasher
        self.classifier = classifier
        self.scheduler = scheduler
        self.scanner = scanner or DiskScanner()
        self.mover = mover or FileCopier()

        self.update = update
        self.copy_on_diff = copy_on_diff
        self.prune = prune
        self.report_matches = report_matches
        self.verbose = verbose

        self.summary = RunSummary()
        self._pending: Dict[str, int] = {}
        self._pending_lock = threading.Lock()

    # --- Primary pass ---

    def reconcile(self, primary_root: Path, skip_dirs: Optional[Set[Path]] = None) -> RunSummary:
        """
        Walks `primary_root` and classifies every file against the reference.

        Per-file read errors are logged and skipped. A StoreError from any
        worker stops scheduling and is re-raised once in-flight work drains.
        """
        primary_root = Path(primary_root)
        if self.prune:
            self._load_pending()

        logging.info(f"Reconciling {primary_root}...")
        try:
            for entry in self.scanner.walk(primary_root, skip_dirs):
                if self.scheduler.failed:
                    break
                if entry.kind is EntryKind.DIR_ENTER:
                    if self.verbose:
                        logging.debug(f"Entering directory: {entry.path}")
                    continue
                if entry.kind is EntryKind.DIR_LEAVE:
                    continue
                self.scheduler.schedule(self._process_file, primary_root, entry.path)
        finally:
            self.scheduler.shutdown()
        self.scheduler.raise_first_error()

        logging.info(f"Primary pass complete: {self.summary.describe()}")
        return self.summary

    def _load_pending(self):
        keys = {rec.key: rec.id for rec in self.reference.iter_all()}
        with self._pending_lock:
            self._pending = keys
        logging.debug(f"Tracking {len(keys)} indexed files for pruning")

    def _process_file(self, root: Path, path: Path):
        key = relative_key(root, path)
        if self.verbose:
            logging.debug(f"Comparing file: {key}")

        try:
            ref = self.reference.lookup(key)
            if ref is None:
                self._handle_missing(key, path)
            else:
                self._handle_present(key, path, ref)
        except (FileHashError, OSError) as e:
            logging.warning(f"Skipping {path}: {e}")
            self.summary.record_skip()
        except UnicodeError as e:
            # Undecodable file name; the index only holds UTF-8 keys
            logging.warning(f"Skipping {os.fsencode(path)!r}: name is not valid UTF-8 ({e.reason})")
            self.summary.record_skip()

    def _handle_missing(self, key: str, path: Path):
        detail = None
        if self.update:
            record = FileRecord.from_key(
                key,
                fingerprint=self.hasher.checksum_file(path),
                content_type=self.classifier.detect(path),
                created_at=datetime.now(),
            )
            self.reference.add(record)
            detail = "indexed"
        elif self.reference.is_persistent:
            detail = "not indexed"
        self._emit(Outcome.MISS, key, detail)
        self._copy_if_requested(key, path)

    def _handle_present(self, key: str, path: Path, ref: FileRecord):
        # Found on both sides; even if the read below fails it must not be pruned
        self._discard_pending(key)
        fingerprint = self.hasher.checksum_file(path)

        if fingerprint == ref.fingerprint:
            self.summary.record(Outcome.MATCH)
            if self.report_matches:
                self.sink.emit(ReportEvent(Outcome.MATCH, key))
            return

        detail = None
        if self.update:
            ref.fingerprint = fingerprint
            ref.content_type = self.classifier.detect(path)
            ref.updated_at = datetime.now()
            if self.reference.update(ref):
                detail = "updated"
            else:
                logging.error(f"Index entry for {key} vanished before it could be updated")
        self._emit(Outcome.DIFF, key, detail)
        self._copy_if_requested(key, path)

    def _copy_if_requested(self, key: str, path: Path):
        if not self.copy_on_diff:
            return
        dest = key_to_path(self.reference.root, key)
        try:
            self.mover.copy(path, dest)
        except FileOperationError as e:
            logging.error(str(e))
            self._emit(Outcome.FAILED, key, "copy failed")

    def _discard_pending(self, key: str):
        if self.prune:
            with self._pending_lock:
                self._pending.pop(key, None)

    def _emit(self, outcome: Outcome, key: str, detail: Optional[str] = None):
        self.summary.record(outcome)
        self.sink.emit(ReportEvent(outcome, key, detail))

    # --- Reference-side passes ---

    def report_extra(self, primary_root: Path, skip_dirs: Optional[Set[Path]] = None) -> RunSummary:
        """Symmetric pass for tree references: keys only the reference has are EXTRA."""
        if not isinstance(self.reference, TreeReference):
            raise TypeError("Extra-file pass needs a directory reference")

        logging.info(f"Checking {self.reference.root} for extra files...")
        for rec in self.reference.iter_all(skip_dirs):
            if self.verbose:
                logging.debug(f"Checking for extra file: {rec.key}")
            if not self.reference.exists_on(primary_root, rec):
                self._emit(Outcome.EXTRA, rec.key)
        return self.summary

    def report_missing(self, primary_root: Path) -> RunSummary:
        """Validation pass for the index: records whose file is gone are MISS."""
        if not isinstance(self.reference, StoreReference):
            raise TypeError("Missing-file pass needs an index reference")

        logging.info("Checking index for files no longer on disk...")
        for rec in self.reference.iter_all(progress=True):
            if not self.reference.exists_on(primary_root, rec):
                self._emit(Outcome.MISS, rec.key, "not on disk")
        return self.summary

    def prune_unmatched(self) -> RunSummary:
        """Deletes every index entry the primary walk never met."""
        with self._pending_lock:
            leftovers = sorted(self._pending.items())
            self._pending = {}

        if not leftovers:
            logging.info("No missing files to remove from the index.")
            return self.summary

        logging.info(f"Removing {len(leftovers)} missing files from the index...")
        for key, file_id in tqdm(leftovers, desc="Pruning", unit="file"):
            try:
                removed = self.reference.remove(FileRecord.from_key(key, id=file_id))
            except StoreError as e:
                logging.error(f"Database error while removing {key} (id {file_id}): {e}")
                removed = False

            if removed:
                logging.info(f"Missing file with ID {file_id} removed from the index: {key}")
                self._emit(Outcome.REMOVED, key)
            else:
                logging.error(f"Failed to remove missing file with ID {file_id}: {key}")
                self._emit(Outcome.FAILED, key, "remove failed")
        return self.summary


class BackupAuditorApp:
    """
    Wires a RunConfig to the engine for each command.

    Collaborators (hasher, classifier, scanner) are created here once and
    passed down; nothing is module-global.
    """

    def __init__(self,
                 cfg: RunConfig,
                 classifier: Optional[Classifier] = None,
                 hasher: Optional[FileHasher] = None,
                 sink: Optional[ReportSink] = None):
        self.cfg = cfg
        self.classifier = classifier or MimeClassifier()
        self.hasher = hasher or FileHasher()
        self.scanner = DiskScanner()
        self._sink = sink

    def _open_sink(self) -> ReportSink:
        return self._sink if self._sink is not None else open_report(self.cfg.report_path)

    def _scheduler(self) -> TaskScheduler:
        return TaskScheduler(max_workers=self.cfg.max_workers)

    def index(self) -> RunSummary:
        """
        Builds or refreshes the index for cfg.root.

        New files are inserted, changed files updated (unless no_update) and,
        with prune_missing, entries for files that are gone are deleted.
        """
        cfg = self.cfg
        cfg.check_roots()
        db_manager = DBManager(cfg.db_path)

        with db_manager as conn, self._open_sink() as sink:
            db_ops = DBOperations(conn, db_manager.lock)
            sink.write_header("INDEX REPORT", [
                f"Directory: {cfg.root}",
                f"Database: {cfg.db_path}",
                "DIFF - Stands for files whose CRC32 checksum changed",
                "MISS - Stands for files not yet in the index",
                "REMOVED - Stands for index entries of files no longer on disk",
            ])

            reconciler = Reconciler(
                StoreReference(db_ops), sink, self.hasher, self.classifier, self._scheduler(),
                scanner=self.scanner,
                update=not cfg.no_update,
                prune=cfg.prune_missing,
                report_matches=cfg.report_matches,
                verbose=cfg.verbose,
            )
            summary = reconciler.reconcile(cfg.root, cfg.skip_dirs)
            if cfg.prune_missing:
                reconciler.prune_unmatched()

        summary.finish()
        logging.info(f"Indexed {cfg.root}: {summary.describe()}")
        return summary

    def validate(self) -> RunSummary:
        """Checks cfg.root against an existing index without modifying it."""
        cfg = self.cfg
        cfg.check_roots()
        db_manager = DBManager(cfg.db_path, read_only=True)

        with db_manager as conn, self._open_sink() as sink:
            db_ops = DBOperations(conn, db_manager.lock)
            sink.write_header("VALIDATION REPORT", [
                f"Directory: {cfg.root}",
                f"Database: {cfg.db_path}",
                "DIFF - Stands for different files due to CRC32 checksum",
                "MISS - Stands for files missing from the index or from the directory",
            ])

            reconciler = Reconciler(
                StoreReference(db_ops), sink, self.hasher, self.classifier, self._scheduler(),
                scanner=self.scanner,
                report_matches=cfg.report_matches,
                verbose=cfg.verbose,
            )
            summary = reconciler.reconcile(cfg.root, cfg.skip_dirs)
            reconciler.report_missing(cfg.root)

        summary.finish()
        logging.info(f"Validated {cfg.root}: {summary.describe()}")
        return summary

    def compare(self) -> RunSummary:
        """Compares cfg.root (base) with cfg.reference_root (other) in both directions."""
        cfg = self.cfg
        cfg.check_roots()
        if cfg.reference_root is None:
            raise ConfigError("Two directories must be specified.")

        with self._open_sink() as sink:
            lines = [
                f"Base directory: {cfg.root}",
                f"Other directory: {cfg.reference_root}",
                "DIFF - Stands for different files due to CRC32 checksum",
                "MISS - Stands for missing files in the other directory",
                "EXTRA - Stands for extra files in the other directory",
            ]
            if cfg.copy_on_diff:
                lines.append("MISS and DIFF files will be copied to the other directory")
            sink.write_header("DIFF REPORT", lines)

            reconciler = Reconciler(
                TreeReference(cfg.reference_root, self.hasher, self.scanner),
                sink, self.hasher, self.classifier, self._scheduler(),
                scanner=self.scanner,
                mover=FileCopier(dry_run=cfg.dry_run),
                copy_on_diff=cfg.copy_on_diff,
                report_matches=cfg.report_matches,
                verbose=cfg.verbose,
            )
            summary = reconciler.reconcile(cfg.root, cfg.skip_dirs)
            reconciler.report_extra(cfg.root, cfg.skip_dirs)

        summary.finish()
        logging.info(f"Compared {cfg.root} with {cfg.reference_root}: {summary.describe()}")
        return summary
