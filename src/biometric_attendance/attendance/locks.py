from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List


class KeyedLocks:
    """One mutual-exclusion region per key, e.g. (identity_id, day).

    Entries are dropped once no thread holds or waits on them, so the
    registry stays bounded by the number of in-flight requests.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key -> [lock, holders-and-waiters]
        self._locks: Dict[Hashable, List] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            slot = self._locks.get(key)
            if slot is None:
                slot = [threading.Lock(), 0]
                self._locks[key] = slot
            slot[1] += 1

        lock = slot[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
