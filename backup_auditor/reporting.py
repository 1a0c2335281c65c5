import csv
import logging
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, TextIO

from tqdm import tqdm

from . import config
from .database.ops import DBOperations
from .exceptions import ReportError
from .models import ReportEvent
from .reference import StoreReference


class ReportSink:
    """
    Line-oriented, write-only report destination.

    Every line is written under a lock so events from concurrent workers
    never interleave mid-line.
    """

    def __init__(self):
        self._lock = threading.Lock()

    def emit(self, event: ReportEvent):
        self.write_line(event.format())

    def write_line(self, text: str):
        with self._lock:
            self._write(text)

    def write_header(self, title: str, lines: Sequence[str]):
        width = config.REPORT_RULE_WIDTH
        self.write_line(f" {title} ".center(width, "="))
        self.write_line(f"Report generated on: {datetime.now().isoformat(timespec='seconds')}")
        for line in lines:
            self.write_line(line)
        self.write_line("=" * width)

    def _write(self, text: str):
        raise NotImplementedError

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class ConsoleReport(ReportSink):
    def __init__(self, stream: Optional[TextIO] = None):
        super().__init__()
        self.stream = stream or sys.stdout

    def _write(self, text: str):
        try:
            self.stream.write(text + "\n")
        except UnicodeEncodeError:
            encoding = getattr(self.stream, "encoding", None) or "utf-8"
            self.stream.write(text.encode(encoding, "backslashreplace").decode(encoding) + "\n")
        self.stream.flush()


class FileReport(ReportSink):
    """Report file, truncated when the sink is created and appended to per line."""

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self.path, "w", encoding="utf-8", errors="backslashreplace")
        except OSError as e:
            raise ReportError(f"Failed to create report file {self.path}: {e}") from e
        logging.info(f"Report will be saved to: {self.path}")

    def _write(self, text: str):
        try:
            self._fh.write(text + "\n")
            self._fh.flush()
        except OSError as e:
            logging.error(f"Error writing to report {self.path}: {e}")

    def close(self):
        with self._lock:
            if not self._fh.closed:
                self._fh.close()


class MemoryReport(ReportSink):
    """Keeps events in memory, for callers that want to inspect the result."""

    def __init__(self):
        super().__init__()
        self.events: List[ReportEvent] = []
        self.lines: List[str] = []

    def emit(self, event: ReportEvent):
        with self._lock:
            self.events.append(event)
            self.lines.append(event.format())

    def _write(self, text: str):
        self.lines.append(text)


def open_report(path: Optional[Path]) -> ReportSink:
    if path is None:
        logging.info("Report will be printed to the console.")
        return ConsoleReport()
    return FileReport(path)


class CatalogExporter:
    def __init__(self, db_ops: DBOperations):
        self.db = db_ops

    def export_csv(self, output_csv: Path) -> int:
        """
        Dumps every indexed file to a CSV sheet, in id order.
        Returns the number of rows written.
        """
        logging.info(f"Exporting index -> {output_csv}")
        headers = ["ID", "Name", "Fingerprint", "Type", "Key", "Created", "Updated"]
        fmt = config.EXPORT_DATA_DATE_FORMAT

        rows = 0
        reference = StoreReference(self.db)
        try:
            with open(output_csv, "w", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                writer.writerow(headers)

                for rec in tqdm(reference.iter_all(), total=self.db.count(), desc="Exporting", unit="file"):
                    writer.writerow([
                        rec.id,
                        rec.name,
                        rec.fingerprint,
                        rec.content_type or "",
                        rec.key,
                        rec.created_at.strftime(fmt) if rec.created_at else "",
                        rec.updated_at.strftime(fmt) if rec.updated_at else "",
                    ])
                    rows += 1
        except OSError as e:
            raise ReportError(f"Failed to write export file {output_csv}: {e}") from e

        logging.info(f"Export complete. Wrote {rows} files.")
        return rows

    @staticmethod
    def default_name(db_path: Path) -> Path:
        """<YYYY-MM-DD>_<db stem>.csv in the working directory."""
        stamp = datetime.now().strftime(config.EXPORT_FILE_DATE_FORMAT)
        return Path(f"{stamp}_{Path(db_path).stem}.csv")
