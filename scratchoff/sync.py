"""Background writes to the store.

Scans return as soon as the in-memory session is updated; the store writes
they cause are queued here and applied by a single worker thread, in order.
A write that keeps failing is logged and dropped, and the in-memory state
stays as it is.
"""

from __future__ import annotations

import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Hashable, Optional

from scratchoff.log import get_logger

log = get_logger(component="sync")

_STOP = object()


@dataclass(frozen=True)
class SyncTask:
    description: str
    run: Callable[[], None]


class SyncQueue:
    def __init__(self, max_attempts: int = 3, retry_delay: float = 0.5) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.failed = 0
        self._queue: "queue.Queue" = queue.Queue()
        self._closed = False
        self._worker = threading.Thread(target=self._run, name="scratchoff-sync", daemon=True)
        self._worker.start()

    def submit(self, task: SyncTask) -> None:
        if self._closed:
            raise RuntimeError("sync queue is closed")
        self._queue.put(task)

    def drain(self) -> None:
        """Block until every submitted task has been applied or given up on."""
        self._queue.join()

    def close(self, timeout: Optional[float] = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put(_STOP)
        self._worker.join(timeout)

    def _run(self) -> None:
        while True:
            task = self._queue.get()
            try:
                if task is _STOP:
                    return
                self._apply(task)
            finally:
                self._queue.task_done()

    def _apply(self, task: SyncTask) -> None:
        for attempt in range(1, self.max_attempts + 1):
            try:
                task.run()
                return
            except Exception:
                # exception detail is never logged
                log.warning("sync_failed", task=task.description, attempt=attempt)
                if attempt < self.max_attempts:
                    time.sleep(self.retry_delay)
        self.failed += 1
        log.error("sync_abandoned", task=task.description, attempts=self.max_attempts)


class KeyedSerialExecutor:
    """Runs calls for the same key one at a time, in submission order.

    Each key gets a single-worker executor, so a call starts only after the
    previous call for that key has finished, whether it succeeded or raised.
    """

    def __init__(self) -> None:
        self._executors: Dict[Hashable, ThreadPoolExecutor] = {}
        self._lock = threading.Lock()

    def submit(self, key: Hashable, fn: Callable, *args, **kwargs) -> Future:
        with self._lock:
            executor = self._executors.get(key)
            if executor is None:
                executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="scratchoff-archive")
                self._executors[key] = executor
        return executor.submit(fn, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executors = list(self._executors.values())
            self._executors.clear()
        for executor in executors:
            executor.shutdown(wait=wait)
