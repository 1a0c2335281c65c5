"""
Reference sides of a reconciliation.

A reference is whatever the walked tree is checked against: a second
directory tree (compare) or the SQLite index (index / validate). Both expose
the same lookup-by-key and enumerate-everything operations so the
reconciler does not care which one it is talking to.
"""
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator, Optional

from tqdm import tqdm

from . import config
from .database.ops import DBOperations
from .models import FileRecord
from .scanning.filesystem import DiskScanner
from .scanning.hasher import FileHasher
from .scanning.paths import key_to_path, relative_key


class ReferenceSet(ABC):
    is_persistent = False

    @abstractmethod
    def lookup(self, key: str) -> Optional[FileRecord]:
        """Returns the reference's record for `key`, or None if it has none."""

    @abstractmethod
    def iter_all(self) -> Iterator[FileRecord]:
        """Enumerates every record on the reference side."""

    def add(self, record: FileRecord) -> FileRecord:
        raise NotImplementedError(f"{type(self).__name__} is read-only")

    def update(self, record: FileRecord) -> bool:
        raise NotImplementedError(f"{type(self).__name__} is read-only")

    def remove(self, record: FileRecord) -> bool:
        raise NotImplementedError(f"{type(self).__name__} is read-only")

    @staticmethod
    def exists_on(root: Path, record: FileRecord) -> bool:
        return key_to_path(root, record.key).is_file()


class TreeReference(ReferenceSet):
    """A second directory tree. Lookups checksum the counterpart file on demand."""

    def __init__(self, root: Path, hasher: FileHasher, scanner: Optional[DiskScanner] = None):
        self.root = Path(root)
        self.hasher = hasher
        self.scanner = scanner or DiskScanner()

    def lookup(self, key: str) -> Optional[FileRecord]:
        path = key_to_path(self.root, key)
        if not path.is_file():
            return None
        # FileHashError propagates; the caller treats it as a per-file failure
        return FileRecord.from_key(key, fingerprint=self.hasher.checksum_file(path))

    def iter_all(self, skip_dirs=None) -> Iterator[FileRecord]:
        for path in self.scanner.iter_files(self.root, skip_dirs):
            yield FileRecord.from_key(relative_key(self.root, path))


class StoreReference(ReferenceSet):
    """The persisted index, enumerated page by page."""
    is_persistent = True

    def __init__(self, db_ops: DBOperations, page_size: int = config.PAGE_SIZE):
        if page_size < 1:
            raise ValueError(f"Page size must be positive, got {page_size}")
        self.db = db_ops
        self.page_size = page_size

    def lookup(self, key: str) -> Optional[FileRecord]:
        return self.db.find_by_key(key)

    def iter_all(self, progress: bool = False) -> Iterator[FileRecord]:
        """
        Keyset pagination ordered by id.

        The cursor moves to the last id of each page, so deletes between
        pages cannot cause duplicates or omissions. The loop ends on the
        first short page; if the table size is an exact multiple of the page
        size that costs one extra, empty fetch.
        """
        total = self.db.count()
        logging.debug(f"Enumerating {total} indexed files in pages of {self.page_size}")

        after_id = 0
        with tqdm(total=total, desc="Reading index", unit="file", disable=None if progress else True) as bar:
            while True:
                page = self.db.page(after_id, self.page_size)
                yield from page
                bar.update(len(page))
                if len(page) < self.page_size:
                    break
                after_id = page[-1].id

    def add(self, record: FileRecord) -> FileRecord:
        self.db.insert(record)
        return record

    def update(self, record: FileRecord) -> bool:
        return self.db.update(record)

    def remove(self, record: FileRecord) -> bool:
        return self.db.delete(record.id)
