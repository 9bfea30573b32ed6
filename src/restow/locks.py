"""In-process keyed mutex table."""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, List


class KeyedLockTable:
    """
    One exclusive lock per key, created on first use and dropped once no
    thread holds or waits for it.

    Keys used by the engine:
        (entity_id, path_kind)  serializes relocation of one asset file
        ("target", path)        serializes claiming a destination path
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, List] = {}

    @contextmanager
    def hold(self, key: Hashable):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def is_held(self, key: Hashable) -> bool:
        with self._guard:
            entry = self._locks.get(key)
            return entry is not None and entry[0].locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
