import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional

from .. import config


class TaskScheduler:
    """
    Runs per-file work on a bounded thread pool.

    schedule() blocks once `max_pending` units are in flight, so a walk over
    millions of files never queues more than a handful of tasks. Exceptions
    escaping a unit are kept and re-raised by raise_first_error().
    """

    def __init__(self, max_workers: int = config.DEFAULT_MAX_WORKERS, max_pending: Optional[int] = None):
        self.max_workers = max(1, max_workers)
        self.max_pending = max_pending or self.max_workers * 2
        self._sequential = self.max_workers <= 1
        self._executor = None if self._sequential else ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="audit-worker"
        )
        self._slots = threading.BoundedSemaphore(self.max_pending)
        self._errors: List[BaseException] = []
        self._errors_lock = threading.Lock()
        self._closed = False
        self._close_lock = threading.Lock()

    def schedule(self, fn: Callable, *args) -> None:
        if self._closed:
            raise RuntimeError("Scheduler has been shut down")

        if self._sequential:
            try:
                fn(*args)
            except Exception as e:
                self._record_error(e)
            return

        self._slots.acquire()
        try:
            future = self._executor.submit(fn, *args)
        except BaseException:
            self._slots.release()
            raise
        future.add_done_callback(self._on_done)

    def _on_done(self, future: Future):
        self._slots.release()
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self._record_error(exc)

    def _record_error(self, exc: BaseException):
        with self._errors_lock:
            self._errors.append(exc)
        logging.debug(f"Task failed: {exc!r}")

    @property
    def failed(self) -> bool:
        with self._errors_lock:
            return bool(self._errors)

    @property
    def errors(self) -> List[BaseException]:
        with self._errors_lock:
            return list(self._errors)

    def raise_first_error(self):
        with self._errors_lock:
            if self._errors:
                raise self._errors[0]

    def shutdown(self):
        """Stops accepting work and waits for in-flight units. Safe to call twice."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
