"""A thread-safe keyed pool with an optional capacity limit."""

from __future__ import annotations

import threading
from collections.abc import Callable, Hashable
from typing import Any

Callback = Callable[[Any, Any], bool]


class PoolError(Exception):
    """Base class for pool errors."""


class PoolExhaustedError(PoolError):
    """Raised when a bounded pool is full."""

    def __init__(self, message: str = "pool is exhausted") -> None:
        super().__init__(message)


class NilValueError(PoolError):
    """Raised when a None value is stored in the pool."""

    def __init__(self, message: str = "value is nil") -> None:
        super().__init__(message)


class Pool:
    """A mapping of keys to values, safe to share between threads.

    A capacity of zero or less means the pool is unbounded.
    """

    def __init__(self, capacity: int = 0) -> None:
        self._items: dict[Hashable, Any] = {}
        self._cap = capacity
        self._lock = threading.RLock()

    def _check_insert(self, value: Any) -> None:
        if self._cap > 0 and len(self._items) >= self._cap:
            raise PoolExhaustedError()
        if value is None:
            raise NilValueError()

    def for_each(self, callback: Callback) -> None:
        """Call ``callback(key, value)`` for each entry until it returns False."""
        with self._lock:
            snapshot = list(self._items.items())
        for key, value in snapshot:
            if not callback(key, value):
                break

    def put(self, key: Hashable, value: Any) -> None:
        """Store ``value`` under ``key``."""
        with self._lock:
            self._check_insert(value)
            self._items[key] = value

    def get(self, key: Hashable) -> Any:
        """Return the value for ``key``, or None if it is absent."""
        with self._lock:
            return self._items.get(key)

    def get_or_put(self, key: Hashable, value: Any) -> tuple[Any, bool]:
        """Return ``(existing, True)`` if ``key`` is present, else store and return ``(value, False)``."""
        with self._lock:
            self._check_insert(value)
            if key in self._items:
                return self._items[key], True
            self._items[key] = value
            return value, False

    def pop(self, key: Hashable) -> Any:
        """Remove ``key`` and return its value, or None if it is absent."""
        with self._lock:
            return self._items.pop(key, None)

    def remove(self, key: Hashable) -> None:
        """Remove ``key`` if it is present."""
        with self._lock:
            self._items.pop(key, None)

    def size(self) -> int:
        """Return the number of entries."""
        with self._lock:
            return len(self._items)

    def clear(self) -> None:
        """Remove every entry."""
        with self._lock:
            self._items = {}

    def cap(self) -> int:
        """Return the capacity of the pool."""
        return self._cap

    def keys(self) -> list[Hashable]:
        """Return a snapshot of the keys."""
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items