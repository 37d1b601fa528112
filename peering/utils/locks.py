"""
Arena of mutexes keyed by route table ID.

Two edges sharing a peer both write to that peer's main route table; holding
the table's lock across the read-then-write keeps their updates from racing.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class TableLocks:
    """Lazily created per-key locks guarded by a single arena lock."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def get(self, key: str) -> threading.Lock:
        """Return the lock for `key`, creating it on first use."""
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for `key` for the duration of the with-block."""
        lock = self.get(key)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
