from __future__ import annotations

import os
import threading
from typing import Any, Callable

from cachetools import TTLCache


CANDIDATE_VIEWS_PREFIX = "CANDIDATES:"


def candidate_view_key(view: str) -> str:
    return f"{CANDIDATE_VIEWS_PREFIX}{str(view or '').strip().upper()}"


class _ViewCache:
    """
    TTL cache with a generation counter.

    `invalidate_prefix` bumps the generation; a value computed across an invalidation
    is returned to its caller but not stored. The cache is per process;
    CACHE_TTL_SECONDS=0 disables storage.
    """

    def __init__(self, ttl: int | None = None, max_items: int | None = None):
        if ttl is None:
            ttl = int(os.getenv("CACHE_TTL_SECONDS", "30") or "0")
        if max_items is None:
            max_items = int(os.getenv("CACHE_MAX_ITEMS", "1000") or "1000")
        self.enabled = ttl > 0
        self._cache = TTLCache(maxsize=max(10, max_items), ttl=max(1, min(3600, ttl)))
        self._lock = threading.RLock()
        self._generation = 0
        self._hits = 0
        self._misses = 0

    def get_or_set(self, key: str, factory: Callable[[], Any]) -> Any:
        with self._lock:
            if key in self._cache:
                self._hits += 1
                return self._cache[key]
            self._misses += 1
            generation = self._generation
        computed = factory()
        with self._lock:
            if self.enabled and generation == self._generation:
                self._cache[key] = computed
        return computed

    def invalidate_prefix(self, prefix: str) -> int:
        if not prefix:
            return 0
        with self._lock:
            self._generation += 1
            keys = [k for k in list(self._cache.keys()) if str(k).startswith(prefix)]
            for k in keys:
                self._cache.pop(k, None)
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._cache),
                "maxsize": self._cache.maxsize,
                "hits": self._hits,
                "misses": self._misses,
                "enabled": self.enabled,
                "hit_rate": round(self._hits / total * 100, 2) if total else 0.0,
            }


_cache = _ViewCache()


def cache_get_or_set(key: str, factory: Callable[[], Any]) -> Any:
    return _cache.get_or_set(key, factory)


def invalidate_candidate_views() -> int:
    return _cache.invalidate_prefix(CANDIDATE_VIEWS_PREFIX)


def cache_clear() -> None:
    _cache.clear()


def cache_stats() -> dict[str, Any]:
    return _cache.stats()
