"""Per-session proxy cache.

Goal: reuse one upstream HTTP client (and its connection pool) per session
across requests. Entries are dropped explicitly when a session leaves the
registry; the size cap only guards against unbounded growth.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class ProxyPool(Generic[T]):
    """A small LRU cache keyed by session id.

    ``on_evict`` is called with every value that leaves the pool (LRU
    eviction, ``discard`` or ``drain``) so the owner can release it.
    """

    def __init__(
        self,
        *,
        max_size: int,
        on_evict: Callable[[T], None] | None = None,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")

        self._max_size = max_size
        self._on_evict = on_evict
        self._entries: OrderedDict[str, T] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get_or_create(self, key: str, factory: Callable[[], T]) -> T:
        existing = self._entries.get(key)
        if existing is not None:
            self._entries.move_to_end(key)
            return existing

        value = factory()
        self._entries[key] = value

        # Enforce size cap (LRU eviction).
        while len(self._entries) > self._max_size:
            _, evicted = self._entries.popitem(last=False)
            self._evicted(evicted)

        return value

    def discard(self, key: str) -> T | None:
        value = self._entries.pop(key, None)
        if value is not None:
            self._evicted(value)
        return value

    def drain(self) -> list[T]:
        """Remove and return every entry (without calling on_evict)."""
        values = list(self._entries.values())
        self._entries.clear()
        return values

    def _evicted(self, value: T) -> None:
        if self._on_evict is not None:
            self._on_evict(value)
