import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Outcome(Enum):
    MATCH = "MATCH"
    DIFF = "DIFF"
    MISS = "MISS"
    EXTRA = "EXTRA"
    # Side-effect tags (prune confirmations and failed copies/deletes)
    REMOVED = "REMOVED"
    FAILED = "FAILED"


@dataclass
class FileRecord:
    """
    One file at one point in time.

    Records coming from a live walk have no id and live only for the
    duration of a run. Records loaded from the index carry the row id.
    """
    key: str                # root-relative, starts with "/"
    name: str
    fingerprint: Optional[str] = None
    content_type: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: Optional[int] = None

    @classmethod
    def from_key(cls, key: str, **kwargs) -> "FileRecord":
        return cls(key=key, name=key.rsplit("/", 1)[-1], **kwargs)


@dataclass(frozen=True)
class ReportEvent:
    outcome: Outcome
    key: str
    detail: Optional[str] = None

    def format(self) -> str:
        line = f"{self.outcome.value}: {self.key}"
        if self.detail:
            line += f" ({self.detail})"
        return line


@dataclass
class RunSummary:
    """Per-outcome counters for a run. Safe to update from worker threads."""
    counts: Counter = field(default_factory=Counter)
    skipped: int = 0
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, outcome: Outcome):
        with self._lock:
            self.counts[outcome] += 1

    def record_skip(self):
        with self._lock:
            self.skipped += 1

    def finish(self):
        self.finished_at = time.monotonic()

    @property
    def elapsed(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    def __getitem__(self, outcome: Outcome) -> int:
        return self.counts[outcome]

    def describe(self) -> str:
        parts = [f"{o.value}={self.counts[o]}" for o in Outcome if self.counts[o]]
        if self.skipped:
            parts.append(f"skipped={self.skipped}")
        return ", ".join(parts) or "no files"
