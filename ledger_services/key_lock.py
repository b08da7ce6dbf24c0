"""
KeyedLockRegistry -- in-process mutual exclusion per ledger key.

Responsibility:
    Hand out one ``threading.Lock`` per hashable key so that at most one
    thread works on a (tenant, counterparty, date) balance at a time while
    unrelated keys proceed in parallel.

Architecture position:
    Services -- imperative shell infrastructure.  Used by
    ReceivableLedgerService around each per-day transaction.  Cross-process
    exclusion is the database's job (row lock, unique constraint, version
    column); this registry only removes pointless contention inside one
    process.

Invariants enforced:
    - A key's lock object is shared by every holder and waiter of that key.
    - Entries are reference counted and dropped when the last user leaves,
      so the registry does not grow with the number of keys ever seen.

Failure modes:
    - TimeoutError when ``timeout`` elapses before the lock is acquired.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager

from ledger_kernel.logging_config import get_logger

logger = get_logger("services.key_lock")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyedLockRegistry:
    """
    Registry of per-key locks.

    Usage:
        locks = KeyedLockRegistry()
        with locks.hold((tenant_id, driver_id, day)):
            ...  # exclusive for this key
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    @contextmanager
    def hold(self, key: Hashable, timeout: float | None = None) -> Iterator[None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Args:
            key: Any hashable key.
            timeout: Seconds to wait; None waits forever.

        Raises:
            TimeoutError: If the lock could not be acquired in time.
        """
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1

        acquired = entry.lock.acquire(timeout=-1 if timeout is None else timeout)
        try:
            if not acquired:
                logger.warning("key_lock_timeout", extra={
                    "key": repr(key),
                    "timeout": timeout,
                })
                raise TimeoutError(f"Timed out after {timeout}s waiting for lock {key!r}")
            yield
        finally:
            if acquired:
                entry.lock.release()
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[key]

    def is_held(self, key: Hashable) -> bool:
        with self._guard:
            entry = self._entries.get(key)
            return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
