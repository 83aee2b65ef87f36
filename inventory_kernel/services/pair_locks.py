"""
PairLockManager -- in-process mutual exclusion per (product, warehouse).

Responsibility:
    Serializes writers on the same pair while letting writers on disjoint
    pairs run in parallel.  Database row locks (PostgreSQL) and BEGIN
    IMMEDIATE (SQLite) protect against other processes; this manager keeps
    threads of one process from queueing on the database at all.

Invariants enforced:
    - Locks are always taken in sorted key order, so two writers touching
      overlapping pair sets can never deadlock each other.
    - acquire() is all-or-nothing: on timeout, locks already taken are
      released before returning.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from inventory_kernel.domain.values import PairKey
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.pair_locks")


class PairLockTimeout(Exception):
    """Raised internally when a pair lock is not obtained in time."""

    def __init__(self, key: PairKey):
        self.key = key
        super().__init__(f"timed out waiting for {key.label}")


class PairLockManager:
    """One lock per pair, created on first use and kept for the process lifetime."""

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._locks: dict[PairKey, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: PairKey) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, keys: Iterable[PairKey]) -> Iterator[tuple[PairKey, ...]]:
        """Hold every lock in ``keys`` for the duration of the block.

        Raises:
            PairLockTimeout: if any lock is not acquired within the timeout.
        """
        ordered = tuple(sorted(set(keys)))
        acquired: list[threading.Lock] = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                if not lock.acquire(timeout=self.timeout_seconds):
                    logger.warning(
                        "pair_lock_timeout",
                        extra={"pair": key.label, "timeout_seconds": self.timeout_seconds},
                    )
                    raise PairLockTimeout(key)
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()

    def is_locked(self, key: PairKey) -> bool:
        with self._registry_lock:
            lock = self._locks.get(key)
        return lock is not None and lock.locked()
