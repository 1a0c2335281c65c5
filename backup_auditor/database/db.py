import sqlite3
import logging
import threading
from pathlib import Path
from typing import Optional

from ..exceptions import StoreError
from .schema import check_schema, init_schema

_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA temp_store=MEMORY",
)


class DBManager:
    """
    Owns the single SQLite connection of a run.

    The connection is shared by every worker thread, so it is opened with
    check_same_thread=False and all statements go through `lock`. A
    read_only manager never changes the database file: the index must
    already exist and carry a supported schema.
    """

    def __init__(self, db_path: Path, must_exist: bool = False, read_only: bool = False):
        self.db_path = db_path
        self.must_exist = must_exist or read_only
        self.read_only = read_only
        self.lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None

    def _is_memory(self) -> bool:
        return str(self.db_path) == ":memory:"

    def connect(self) -> sqlite3.Connection:
        if self._conn is not None:
            return self._conn

        if self.must_exist and not self._is_memory() and not Path(self.db_path).is_file():
            raise StoreError(f"Database not found: {self.db_path}")

        logging.info(f"Opening index database: {self.db_path}")
        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open database {self.db_path}: {e}") from e

        try:
            if self.read_only:
                # No journal switch, no DDL; any write attempt fails
                conn.execute("PRAGMA query_only=ON")
                check_schema(conn)
            else:
                for pragma in _PRAGMAS:
                    conn.execute(pragma)
                init_schema(conn)
        except StoreError:
            conn.close()
            raise
        except sqlite3.Error as e:
            conn.close()
            raise StoreError(f"Failed to prepare database {self.db_path}: {e}") from e

        self._conn = conn
        return conn

    def close(self):
        conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()

    def __enter__(self) -> sqlite3.Connection:
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
