"""
Per-lot and per-batch lock registries.

A decrement or increment against a lot is a read-modify-write of
quantity_remaining, so mutations of the SAME lot are serialized through a
re-entrant lock keyed by lot id. Mutations of different lots proceed in
parallel. Multi-lot operations take their locks in ascending lot id order
so two batches touching overlapping lots cannot deadlock.

Batch state changes (update, complete, rollback) are serialized the same way
through batch_locks. A batch lock is always taken before any lot lock.

The row itself is also read with SELECT ... FOR UPDATE, which databases that
support row locks honour across processes; these registries cover threads in
the current process (and SQLite, which ignores FOR UPDATE).
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterable, Iterator, List, Optional

from ops_ledger.utils.config import get_config

from .exceptions import TransactionFailed


class LockRegistry:
    """Thread-safe registry of one RLock per key.

    Args:
        label: Name of the locked resource, used in timeout messages
    """

    def __init__(self, label: str = "lot"):
        self.label = label
        self._locks: Dict[Hashable, threading.RLock] = {}
        self._guard = threading.Lock()

    def _get(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    def _acquire(self, key: Hashable, timeout: float) -> threading.RLock:
        lock = self._get(key)
        if not lock.acquire(timeout=timeout):
            raise TransactionFailed(f"Timed out waiting for lock on {self.label} {key}")
        return lock

    @contextmanager
    def hold(self, key: Hashable, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the lock for one key.

        Raises:
            TransactionFailed: If the lock is not acquired within timeout seconds
        """
        if timeout is None:
            timeout = get_config().lock_timeout_seconds
        lock = self._acquire(key, timeout)
        try:
            yield
        finally:
            lock.release()

    @contextmanager
    def hold_many(self, keys: Iterable[int], timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the locks for several keys, acquired in ascending order."""
        if timeout is None:
            timeout = get_config().lock_timeout_seconds
        acquired: List[threading.RLock] = []
        try:
            for key in sorted(set(keys)):
                acquired.append(self._acquire(key, timeout))
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def clear(self) -> None:
        """Forget all locks. Only safe when no lock is held (tests)."""
        with self._guard:
            self._locks.clear()


lot_locks = LockRegistry("lot")
batch_locks = LockRegistry("batch")
