"""Short-lived cache for lottery report reads."""

from __future__ import annotations

import threading
from typing import Any, Callable, Hashable, Optional, Tuple

from cachetools import TTLCache

from core.constants import CacheDefaults


class ReportCache:
    """TTL cache keyed by (report name, job id).

    Report views are read from Flask worker threads while commits, releases
    and claims invalidate from the event loop, so every access holds a lock.
    """

    def __init__(self, ttl: int = CacheDefaults.REPORT_TTL, maxsize: int = CacheDefaults.REPORT_SIZE) -> None:
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = threading.Lock()

    def get_or_set(self, report: str, job_id: int, loader: Callable[[], Any]) -> Any:
        key: Tuple[str, Hashable] = (report, job_id)
        with self._lock:
            if key in self._cache:
                return self._cache[key]
        value = loader()
        with self._lock:
            self._cache[key] = value
        return value

    def invalidate(self, job_id: int) -> None:
        """Drop every cached report for one job."""
        with self._lock:
            for key in [key for key in self._cache if key[1] == job_id]:
                self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


_cache: Optional[ReportCache] = None


def init_cache(ttl: int = CacheDefaults.REPORT_TTL) -> ReportCache:
    global _cache
    _cache = ReportCache(ttl=ttl)
    return _cache


def get_cache() -> ReportCache:
    global _cache
    if _cache is None:
        _cache = ReportCache()
    return _cache
