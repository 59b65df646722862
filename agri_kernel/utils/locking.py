"""
Per-key mutual exclusion with a bounded wait.

Responsibility:
    Serialize post/reverse transitions on the same document inside one
    process.  A caller that cannot acquire the key's lock within the
    timeout gets BusyError instead of waiting indefinitely.

Architecture position:
    Kernel > Utils.  Used by agri_services.settlements around each
    transition; the database row lock (FOR UPDATE) covers other processes.

Invariants enforced:
    - At most one holder per key at a time.
    - Lock entries are released when their last user leaves, so the
      registry does not grow with every document ever touched.
"""

import threading
import time
from collections.abc import Hashable, Iterator
from contextlib import contextmanager

from agri_kernel.exceptions import BusyError
from agri_kernel.logging_config import get_logger

logger = get_logger("utils.locking")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyedLockRegistry:
    """
    Registry of one lock per key.

    Usage:
        locks = KeyedLockRegistry(entity_type="Settlement")
        with locks.hold(settlement_id, timeout=5.0):
            ...  # exclusive for this settlement
    """

    def __init__(self, entity_type: str = "entity"):
        self.entity_type = entity_type
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    def _checkout(self, key: Hashable) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key: Hashable, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(key, None)

    @contextmanager
    def hold(self, key: Hashable, timeout: float) -> Iterator[None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Raises:
            BusyError: If the lock is not acquired within ``timeout`` seconds.
        """
        entry = self._checkout(key)
        t0 = time.monotonic()
        acquired = entry.lock.acquire(timeout=timeout)
        if not acquired:
            self._checkin(key, entry)
            logger.warning("lock_acquire_timeout", extra={
                "entity_type": self.entity_type,
                "entity_id": str(key),
                "timeout_seconds": timeout,
            })
            raise BusyError(self.entity_type, str(key), timeout_seconds=timeout)

        logger.debug("lock_acquired", extra={
            "entity_type": self.entity_type,
            "entity_id": str(key),
            "wait_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        try:
            yield
        finally:
            entry.lock.release()
            self._checkin(key, entry)

    def is_held(self, key: Hashable) -> bool:
        with self._guard:
            entry = self._entries.get(key)
            return entry is not None and entry.lock.locked()
