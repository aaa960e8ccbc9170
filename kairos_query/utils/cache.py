"""Basic expiring LRU cache utility.

This module provides a thin, typed wrapper over :class:`cachetools.TTLCache`
with a minimal API for `get`/`set`/`clear`. Entries expire after ``ttl``
seconds and the least-recently-used entry is evicted once ``maxsize`` is
reached; ``ttl=None`` falls back to a plain :class:`cachetools.LRUCache`.
"""

from __future__ import annotations

from collections.abc import Hashable
from typing import Any, Generic, Optional, TypeVar

from cachetools import LRUCache, TTLCache  # type: ignore[import-untyped]

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class Cache(Generic[K, V]):
    """Simple LRU cache with optional time-to-live.

    Parameters
    ----------
    maxsize: int
        Maximum number of entries to retain.
    ttl: Optional[float]
        Seconds an entry stays valid; ``None`` disables expiry.
    """

    def __init__(self, maxsize: int = 1024, ttl: Optional[float] = None) -> None:
        self._cache: Any
        if ttl is None:
            self._cache = LRUCache(maxsize=maxsize)
        else:
            self._cache = TTLCache(maxsize=maxsize, ttl=ttl)

    def get(self, key: K) -> Optional[V]:
        """Return value for `key` or None if missing or expired."""
        return self._cache.get(key)

    def set(self, key: K, value: V) -> None:
        """Insert or update `key` with `value`."""
        self._cache[key] = value

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
