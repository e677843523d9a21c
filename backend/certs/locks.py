"""
Per-domain mutual exclusion for rotations.

Two layers: an in-process threading.Lock per domain (scheduler workers run
in threads) and an fcntl lock file per domain so that a cron-driven CLI
run and the API process never rotate the same domain at once.
"""
import fcntl
import logging
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .errors import RotationInProgress


logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05


class DomainLockTable:
    """Lock table owned by one scheduler/rotator instance."""

    def __init__(self, lock_dir: Path, timeout: Optional[float] = None):
        """
        Args:
            lock_dir: Directory for the per-domain lock files
            timeout: Seconds to wait for a busy domain (None waits forever)
        """
        self.lock_dir = lock_dir
        self.timeout = timeout
        self._locks: dict[str, threading.Lock] = {}
        self._table_lock = threading.Lock()

    def _thread_lock(self, domain: str) -> threading.Lock:
        with self._table_lock:
            lock = self._locks.get(domain)
            if lock is None:
                lock = threading.Lock()
                self._locks[domain] = lock
            return lock

    def _deadline(self) -> Optional[float]:
        return None if self.timeout is None else time.monotonic() + self.timeout

    @staticmethod
    def _remaining(deadline: Optional[float]) -> float:
        if deadline is None:
            return -1
        return max(0.0, deadline - time.monotonic())

    @contextmanager
    def hold(self, domain: str) -> Iterator[None]:
        """
        Hold the domain lock for the duration of the block.

        Raises:
            RotationInProgress: If the lock is not obtained before the timeout
        """
        deadline = self._deadline()
        thread_lock = self._thread_lock(domain)
        if not thread_lock.acquire(timeout=self._remaining(deadline)):
            raise RotationInProgress(domain, "rotation already in progress in this process")

        fd = None
        try:
            fd = self._acquire_file_lock(domain, deadline)
            yield
        finally:
            if fd is not None:
                try:
                    fcntl.flock(fd, fcntl.LOCK_UN)
                finally:
                    os.close(fd)
            thread_lock.release()

    def _acquire_file_lock(self, domain: str, deadline: Optional[float]) -> int:
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        lock_path = self.lock_dir / f"{domain}.lock"
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o600)
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if deadline is not None and time.monotonic() >= deadline:
                        raise RotationInProgress(domain, "rotation already in progress in another process")
                    time.sleep(_POLL_INTERVAL)
            os.ftruncate(fd, 0)
            os.write(fd, f"{os.getpid()} {time.time()}\n".encode())
            return fd
        except BaseException:
            os.close(fd)
            raise

