"""
Per-target advisory locks.

Serializes executions that touch the same target id inside one process.
Locks are held from before-state capture until the snapshot is written or
the failure is recorded. Several targets are always taken in sorted order.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List

from creatorengine.core.exceptions import LockTimeoutError

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class TargetLockManager:

    def __init__(self, timeout: float = 30):
        self.timeout = timeout
        self._entries: Dict[str, _Entry] = {}
        self._guard = threading.Lock()

    def acquire(self, target: str, timeout: float = None) -> None:
        """
        Block until the target's lock is held.

        Raises:
            LockTimeoutError: If the lock is still held elsewhere after the timeout
        """
        timeout = self.timeout if timeout is None else timeout
        with self._guard:
            entry = self._entries.setdefault(target, _Entry())
            entry.users += 1

        started = time.monotonic()
        if not entry.lock.acquire(timeout=timeout):
            self._release_entry(target, entry)
            logger.warning(f"Lock wait on {target} timed out after {timeout}s")
            raise LockTimeoutError(target, timeout)

        waited = time.monotonic() - started
        if waited > 0.5:
            logger.info(f"Acquired lock on {target} after {waited:.2f}s")

    def release(self, target: str) -> None:
        with self._guard:
            entry = self._entries.get(target)
        if entry is None:
            logger.warning(f"Release of unknown lock {target}")
            return
        entry.lock.release()
        self._release_entry(target, entry)

    def is_locked(self, target: str) -> bool:
        with self._guard:
            return target in self._entries

    @contextmanager
    def hold(self, targets: Iterable[str], timeout: float = None) -> Iterator[List[str]]:
        ordered = sorted({t for t in targets if t})
        held: List[str] = []
        try:
            for target in ordered:
                self.acquire(target, timeout)
                held.append(target)
            yield held
        finally:
            for target in reversed(held):
                self.release(target)

    def _release_entry(self, target: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users <= 0 and self._entries.get(target) is entry:
                del self._entries[target]
