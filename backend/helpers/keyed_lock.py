"""
Per-key mutual exclusion for read-check-write sequences.

The suspension exclusivity check and the detection de-duplication check are
both "look for an existing row, insert if none". SQLite and PostgreSQL give
no compare-and-swap for those, so each sequence runs under a lock keyed by
the scope it protects (user ID, or user ID + rule).

Locks are process-local.
"""

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager


class KeyedLock:
    """Hands out one lock per key and forgets it once nobody holds it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """
        Hold the lock for `key` for the duration of the block.

        Args:
            key: Scope to serialize on
        """
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def active_keys(self) -> int:
        """Number of keys currently held or waited on."""
        with self._guard:
            return len(self._locks)


suspension_locks = KeyedLock()
detection_locks = KeyedLock()
