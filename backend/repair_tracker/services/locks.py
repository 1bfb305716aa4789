from __future__ import annotations
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, List
from repair_tracker.errors import RecordBusyError


class KeyedLocks:
    """Per-key mutual exclusion with bounded waits.

    Entries are reference counted and dropped once no thread holds or waits
    on them, so the map only grows with in-flight keys.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, List] = {}

    @contextmanager
    def hold(self, key: Hashable, timeout: float = None):
        wait = self.timeout if timeout is None else timeout
        with self._guard:
            entry = self._entries.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        acquired = entry[0].acquire(timeout=wait)
        try:
            if not acquired:
                raise RecordBusyError(key)
            yield
        finally:
            if acquired:
                entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0 and self._entries.get(key) is entry:
                    del self._entries[key]

    def in_flight(self) -> int:
        with self._guard:
            return len(self._entries)


__all__ = ['KeyedLocks']
