"""In-process per-key locks serializing lead upserts."""

from __future__ import annotations

from collections import defaultdict
from contextlib import contextmanager
from threading import Lock
from typing import Dict, Hashable, Iterator


class KeyedLocks:
    """Serialize work per key inside one process (e.g. per workspace + profile URL)."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: Dict[Hashable, Lock] = defaultdict(Lock)
        self._holders: Dict[Hashable, int] = defaultdict(int)

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock = self._locks[key]
            self._holders[key] += 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._holders[key] -= 1
                if self._holders[key] <= 0:
                    del self._holders[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
