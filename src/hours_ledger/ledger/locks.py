from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Hashable, Iterator, Optional

from ..core.exceptions import ConcurrentMutationError


class KeyedLockArena:
    """One mutex per key, created on demand and dropped when unused.

    There is no global lock around the critical sections: only the bookkeeping
    of the arena itself is guarded.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[Hashable, list] = {}

    @contextmanager
    def hold(self, key: Hashable, *, timeout: Optional[float] = None) -> Iterator[None]:
        with self._guard:
            slot = self._locks.setdefault(key, [threading.Lock(), 0])
            slot[1] += 1

        lock = slot[0]
        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        try:
            if not acquired:
                raise ConcurrentMutationError(f"Timed out waiting for {key}")
            yield
        finally:
            if acquired:
                lock.release()
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
