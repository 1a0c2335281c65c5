"""
Index schema.
"""
import sqlite3
import logging

from ..exceptions import StoreError

SCHEMA_VERSION = 1

_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY
    )
    """,
    # AUTOINCREMENT keeps ids monotonic and never reused after a delete;
    # keyset paging walks the table by id.
    """
    CREATE TABLE IF NOT EXISTS backup_files (
        id              INTEGER PRIMARY KEY AUTOINCREMENT,
        name            TEXT NOT NULL,
        key             TEXT UNIQUE NOT NULL,   -- e.g. /dir/a.txt
        fingerprint     TEXT NOT NULL,          -- CRC-32, 8 uppercase hex digits
        content_type    TEXT,
        created_at      TEXT NOT NULL,
        updated_at      TEXT
    )
    """,
)


def _stored_version(conn: sqlite3.Connection):
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row else None


def _refuse_newer(found):
    if found is not None and found > SCHEMA_VERSION:
        raise StoreError(f"Index schema version {found} is newer than supported version {SCHEMA_VERSION}")


def init_schema(conn: sqlite3.Connection):
    """
    Creates the index tables if they are missing and stamps the version.

    Runs on every read-write connect. An index written by a newer schema is refused.
    """
    with conn:
        for ddl in _TABLES:
            conn.execute(ddl)

        found = _stored_version(conn)
        _refuse_newer(found)
        if found is None:
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))

    logging.debug(f"Index schema ready (version {SCHEMA_VERSION}).")


def check_schema(conn: sqlite3.Connection):
    """Read-only counterpart of init_schema: verifies without creating anything."""
    try:
        found = _stored_version(conn)
        conn.execute("SELECT 1 FROM backup_files LIMIT 1")
    except sqlite3.OperationalError as e:
        raise StoreError(f"Not a backup index: {e}") from e
    _refuse_newer(found)
