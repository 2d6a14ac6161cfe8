"""Per-product locks acquired in a stable order.

The registry serializes reservations that touch the same product inside
one process. Locks are always taken in ascending product id so two
multi-item reservations with overlapping products cannot deadlock.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List

from ..errors import StockBusy


class ProductLockRegistry:
    """Lazily created ``threading.Lock`` per product id.

    This implementation is thread-safe via an internal guard lock.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}

    def _lock_for(self, product_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(product_id)
            if lock is None:
                lock = self._locks[product_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, product_ids: Iterable[int], wait: bool = True, timeout: float | None = None) -> Iterator[List[int]]:
        """Acquire the locks of ``product_ids`` in ascending order.

        Args:
            product_ids: Products to lock; duplicates are ignored.
            wait: Block for each lock when True, fail immediately otherwise.
            timeout: Max seconds to wait per lock when ``wait`` is True;
                None waits forever.

        Yields:
            list[int]: The locked product ids, ascending.

        Raises:
            StockBusy: When a lock could not be acquired under the policy.
                Locks already taken are released before raising.
        """
        ordered = sorted(set(product_ids))
        acquired: List[threading.Lock] = []
        try:
            for pid in ordered:
                lock = self._lock_for(pid)
                if wait:
                    ok = lock.acquire(True, -1 if timeout is None else timeout)
                else:
                    ok = lock.acquire(False)
                if not ok:
                    raise StockBusy([pid])
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()
