"""Per-partner cache of grouped alerts.

Usage:
    cache = AlertsCache()
    groups = cache.get(partner_id)
    if groups is None and not cache.is_in_progress(partner_id):
        cache.mark_in_progress(partner_id)
        try:
            groups = build_groups(partner_id)
            cache.set(partner_id, groups)
        finally:
            cache.clear_in_progress(partner_id)

An empty tuple is a valid cached value ("no alerts"); a miss is None.
"""
import threading
import time
from typing import Any

from churnwatch.models.alerts import AlertGroup
from churnwatch.config import get_settings

settings = get_settings()


class AlertsCache:
    """Thread-safe in-memory map of partner id -> AlertGroups with optional TTL and max-entry limit."""

    def __init__(self, max_entries: int | None = None, ttl: int | None = None):
        # key -> (expires_at or None, groups)
        self._store: dict[str, tuple[float | None, tuple[AlertGroup, ...]]] = {}
        self._in_progress: set[str] = set()
        self._lock = threading.Lock()
        self._max_entries = max_entries or settings.alerts_cache_max_entries
        self._ttl = ttl if ttl is not None else settings.alerts_cache_ttl_seconds
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> tuple[AlertGroup, ...] | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                return None
            expires_at, groups = entry
            if expires_at is not None and time.time() > expires_at:
                del self._store[key]
                self._misses += 1
                return None
            self._hits += 1
            return groups

    def set(self, key: str, groups: Any) -> None:
        """Publish a complete result for ``key``; the last write wins."""
        groups = tuple(groups)
        expires_at = time.time() + self._ttl if self._ttl else None
        with self._lock:
            self._store.pop(key, None)
            # Evict expired entries first to stay under limit
            if len(self._store) >= self._max_entries:
                now = time.time()
                expired = [k for k, (exp, _) in self._store.items() if exp is not None and now > exp]
                for k in expired:
                    del self._store[k]
            # If still at limit, evict the oldest insert
            if len(self._store) >= self._max_entries:
                del self._store[next(iter(self._store))]
            self._store[key] = (expires_at, groups)

    def invalidate(self, key: str | None = None) -> int:
        """Drop one partner's entry, or everything when key is None. Returns count removed."""
        with self._lock:
            if key is None:
                removed = len(self._store)
                self._store.clear()
                return removed
            return 1 if self._store.pop(key, None) is not None else 0

    def mark_in_progress(self, key: str) -> bool:
        """Flag ``key`` as being computed. Returns False when it already was."""
        with self._lock:
            if key in self._in_progress:
                return False
            self._in_progress.add(key)
            return True

    def is_in_progress(self, key: str) -> bool:
        with self._lock:
            return key in self._in_progress

    def clear_in_progress(self, key: str) -> None:
        with self._lock:
            self._in_progress.discard(key)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._store),
                "partners": list(self._store),
                "in_progress": sorted(self._in_progress),
                "hits": self._hits,
                "misses": self._misses,
            }
