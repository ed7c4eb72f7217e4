"""Per-product serialization for stock movements.

Each product id gets its own ``threading.Lock`` on first use. Entries are
reference counted (holders plus waiters) and dropped once nobody needs them,
so the registry stays proportional to the number of products currently in
flight. Locks for different products are independent.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from config import settings
from services.exceptions import ConcurrencyTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class ProductLockRegistry:

    def __init__(self, default_timeout: float | None = None) -> None:
        self._default_timeout = default_timeout
        self._entries: dict[int, _Entry] = {}
        self._mutex = threading.Lock()

    @property
    def default_timeout(self) -> float:
        if self._default_timeout is not None:
            return self._default_timeout
        return settings.STOCK_LOCK_TIMEOUT_SECONDS

    def _checkout(self, product_id: int) -> _Entry:
        with self._mutex:
            entry = self._entries.get(product_id)
            if entry is None:
                entry = self._entries[product_id] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, product_id: int, entry: _Entry) -> None:
        with self._mutex:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[product_id]

    @contextmanager
    def hold(self, product_id: int, timeout: float | None = None) -> Iterator[None]:
        """Hold the product's lock for the duration of the block.

        Raises ConcurrencyTimeout when the lock is not free within ``timeout``
        seconds. The lock is released on every exit path.
        """
        wait = self.default_timeout if timeout is None else timeout
        # Lock.acquire treats a negative timeout as "wait forever"
        if wait <= 0:
            raise ValueError(f"Lock timeout must be positive, got {wait!r}")
        entry = self._checkout(product_id)
        try:
            if not entry.lock.acquire(timeout=wait):
                logger.warning("Timed out after %.2fs waiting for product %s", wait, product_id)
                raise ConcurrencyTimeout(product_id, wait)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(product_id, entry)

    def with_product_lock(self, product_id: int, fn: Callable[[], T], timeout: float | None = None) -> T:
        with self.hold(product_id, timeout):
            return fn()

    def is_locked(self, product_id: int) -> bool:
        with self._mutex:
            entry = self._entries.get(product_id)
            return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        with self._mutex:
            return len(self._entries)


# Shared by every request handler in the process
product_locks = ProductLockRegistry()
