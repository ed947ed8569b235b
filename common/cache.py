"""Simple TTL cache helpers for frequently read derived data."""
from __future__ import annotations

from threading import Lock
from typing import Callable, Generic, Hashable, Optional, TypeVar

from cachetools import TTLCache

T = TypeVar("T")


class SimpleTTLCache(Generic[T]):
    def __init__(self, ttl: int, maxsize: int = 256) -> None:
        self._cache: TTLCache[Hashable, T] = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = Lock()

    def get(self, key: Hashable) -> Optional[T]:
        with self._lock:
            return self._cache.get(key)

    def set(self, key: Hashable, value: T) -> None:
        with self._lock:
            self._cache[key] = value

    def get_or_load(self, key: Hashable, loader: Callable[[], T]) -> T:
        """Return the cached value, calling ``loader`` and caching its result on a miss."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        self.set(key, value)
        return value

    def pop(self, key: Hashable) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
