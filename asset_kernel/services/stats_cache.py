"""
Read-side cache for per-branch asset status counts.

An explicit component with an owned TTL and explicit invalidation.  The
workflow facade holds one instance for its lifetime and calls
``invalidate()`` after every committed mutation, so a stale count can only
survive until the TTL expires when the write happened elsewhere.
"""

import threading
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from asset_kernel.domain.clock import Clock
from asset_kernel.logging_config import get_logger

logger = get_logger("services.stats_cache")


@dataclass
class CacheEntry:
    value: Any
    created_at: datetime

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.created_at >= ttl


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class StatsCache:
    def __init__(self, clock: Clock, ttl_seconds: int = 60):
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self._clock = clock
        self._ttl = timedelta(seconds=ttl_seconds)
        self._entries: dict[Hashable, CacheEntry] = {}
        self._lock = threading.Lock()
        self.stats = CacheStats()

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        """Cached value for ``key``; ``loader`` runs on a miss or expiry."""
        now = self._clock.now()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not entry.is_expired(now, self._ttl):
                self.stats.hits += 1
                return entry.value
            self.stats.misses += 1

        value = loader()
        with self._lock:
            self._entries[key] = CacheEntry(value=value, created_at=now)
        return value

    def invalidate(self, key: Hashable | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)
            self.stats.invalidations += 1
        logger.debug("stats_cache_invalidated", extra={"cache_key": str(key) if key else "*"})

    def __len__(self) -> int:
        return len(self._entries)
