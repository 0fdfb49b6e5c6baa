"""Per-key mutual exclusion for ledger mutations."""

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0  # threads holding or waiting on this lock


class KeyedLock:
    """
    A registry of locks created on demand, one per key.

    Holding the lock for one key never blocks other keys. Entries are
    reference counted and dropped as soon as no thread holds or waits on
    them, so keys that are never used again (deleted groups) leave nothing
    behind.
    """

    def __init__(self):
        """Initialize an empty registry."""
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Hold the lock for `key` for the duration of the block."""
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[key]

    def __contains__(self, key: Hashable) -> bool:
        with self._guard:
            return key in self._entries

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
