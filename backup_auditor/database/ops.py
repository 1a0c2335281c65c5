import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional

from ..exceptions import StoreError
from ..models import FileRecord

_COLUMNS = "id, name, key, fingerprint, content_type, created_at, updated_at"


def _to_iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_record(row) -> FileRecord:
    file_id, name, key, fingerprint, content_type, created_at, updated_at = row
    return FileRecord(
        id=int(file_id),
        name=name,
        key=key,
        fingerprint=fingerprint,
        content_type=content_type,
        created_at=_from_iso(created_at),
        updated_at=_from_iso(updated_at),
    )


class DBOperations:
    """
    Point queries, writes and paging over the backup_files table.

    One instance may be shared by many worker threads: every statement runs
    under `lock` and writes are committed immediately. Any sqlite3 error is
    re-raised as StoreError.
    """

    def __init__(self, conn: sqlite3.Connection, lock: Optional[threading.RLock] = None):
        self.conn = conn
        self.lock = lock or threading.RLock()

    @contextmanager
    def _cursor(self, commit: bool = False):
        with self.lock:
            try:
                cur = self.conn.cursor()
                yield cur
                if commit:
                    self.conn.commit()
            except sqlite3.Error as e:
                if commit:
                    self.conn.rollback()
                raise StoreError(f"Database operation failed: {e}") from e

    def insert(self, rec: FileRecord) -> int:
        """Inserts a new record and returns the id assigned by the database."""
        created = rec.created_at or datetime.now()
        with self._cursor(commit=True) as cur:
            cur.execute(
                """
                INSERT INTO backup_files (name, key, fingerprint, content_type, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (rec.name, rec.key, rec.fingerprint, rec.content_type,
                 _to_iso(created), _to_iso(rec.updated_at)),
            )
            if cur.lastrowid is None:
                raise StoreError("Database INSERT failed to return a row ID.")
            rec.id = int(cur.lastrowid)
            rec.created_at = created
        return rec.id

    def update(self, rec: FileRecord) -> bool:
        """Writes every mutable column of an existing record. Returns False if the id is unknown."""
        if rec.id is None:
            raise ValueError(f"Cannot update record without an id: {rec.key}")
        with self._cursor(commit=True) as cur:
            cur.execute(
                """
                UPDATE backup_files
                SET name = ?, key = ?, fingerprint = ?, content_type = ?, created_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (rec.name, rec.key, rec.fingerprint, rec.content_type,
                 _to_iso(rec.created_at), _to_iso(rec.updated_at), rec.id),
            )
            return cur.rowcount == 1

    def delete(self, file_id: int) -> bool:
        with self._cursor(commit=True) as cur:
            cur.execute("DELETE FROM backup_files WHERE id = ?", (file_id,))
            return cur.rowcount == 1

    def find_by_key(self, key: str) -> Optional[FileRecord]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM backup_files WHERE key = ?", (key,))
            row = cur.fetchone()
        return _row_to_record(row) if row else None

    def page(self, after_id: int, size: int) -> List[FileRecord]:
        """Returns up to `size` records with id > after_id, ordered by id."""
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM backup_files WHERE id > ? ORDER BY id LIMIT ?",
                (after_id, size),
            )
            rows = cur.fetchall()
        return [_row_to_record(r) for r in rows]

    def count(self) -> int:
        with self._cursor() as cur:
            cur.execute("SELECT COUNT(*) FROM backup_files")
            return int(cur.fetchone()[0])

    def list_keys(self) -> Dict[str, int]:
        """Returns {key: id} for every indexed file."""
        with self._cursor() as cur:
            cur.execute("SELECT key, id FROM backup_files")
            return {key: int(file_id) for key, file_id in cur.fetchall()}
