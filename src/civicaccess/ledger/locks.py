"""Per-key lock registry.

Writes for the same key are serialized; writes for different keys proceed
independently. Locks are re-entrant so a caller holding a key's lock may
call back into code that takes the same lock.

A key's lock lives only while some thread holds or waits on it, so the
registry is bounded by concurrent keys rather than every key ever seen.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Hashable, Iterator


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLocks:
    """Lazily-created re-entrant lock per key, dropped when unused."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, _KeyLock] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            slot = self._locks.get(key)
            if slot is None:
                slot = _KeyLock()
                self._locks[key] = slot
            slot.users += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._guard:
                slot.users -= 1
                if slot.users == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
