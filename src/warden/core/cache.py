"""Bounded LRU cache used for memoized handles.

Executors keep one per instance for schema-scoped handles so that repeated
``with_schema("tenant_42")`` calls return the same wrapper without growing
without bound.

Performance:
    - get/set: O(1) via ``OrderedDict.move_to_end``
    - Eviction: least recently used entry once ``max_size`` is exceeded

Tags:
    cache, lru, spine-warden
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Hashable
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


class LRUCache(Generic[K, V]):
    """Bounded in-memory LRU cache.

    ``None`` is a valid cached value; use :meth:`contains` to distinguish it
    from a miss.

    Example:
        cache = LRUCache[str, int](max_size=2)
        cache.set("a", 1)
        cache.get("a")  # 1
    """

    def __init__(self, max_size: int = 100):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._store: OrderedDict[K, V] = OrderedDict()
        self._max_size = max_size

    @property
    def max_size(self) -> int:
        return self._max_size

    def get(self, key: K) -> V | None:
        """Retrieve a value and mark it most recently used."""
        value = self._store.get(key, _MISSING)
        if value is _MISSING:
            return None
        self._store.move_to_end(key)
        return value  # type: ignore[return-value]

    def set(self, key: K, value: V) -> None:
        """Store a value, evicting the least recently used entry if full."""
        if key in self._store:
            self._store.move_to_end(key)
        self._store[key] = value
        if len(self._store) > self._max_size:
            self._store.popitem(last=False)

    def contains(self, key: K) -> bool:
        return key in self._store

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


__all__ = ["LRUCache"]
