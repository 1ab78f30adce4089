"""Bounded, time-expiring response cache shared by the components of one process."""

from typing import Any, Hashable, Optional

from cachetools import TTLCache


class ResponseCache:
    """Explicit per-process cache for immutable lookup results.

    Constructed once by the container and injected wherever a component
    memoises external responses. Entries are never mutated after being
    written, so repeated writes for the same key are harmless.
    """

    def __init__(self, max_size: int = 1000, ttl_seconds: float = 1800):
        self._cache: TTLCache = TTLCache(maxsize=max_size, ttl=ttl_seconds)
        self.hits = 0
        self.misses = 0

    def get(self, namespace: str, key: Hashable) -> Optional[Any]:
        value = self._cache.get((namespace, key))
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        return value

    def set(self, namespace: str, key: Hashable, value: Any) -> None:
        if value is None:
            return
        self._cache[(namespace, key)] = value

    def __contains__(self, item) -> bool:
        return item in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        self._cache.clear()
