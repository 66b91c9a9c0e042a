"""Short-lived cache of alerts prepared for display.

Keys are a composite of the display filters (severity, parameter, limit).
Invalidation drops every key at once: alert volume is low, so a cold
cache after each processing cycle costs little.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CacheEntry:
    """A cached value and when it stops being valid."""

    key: str
    value: Any
    inserted_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


class ResultCache:
    """TTL cache keyed by display filters.

    Expired entries are dropped lazily on ``get``. When full, the oldest
    entry is evicted to make room.
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self._generation = 0

    @property
    def generation(self) -> int:
        """Bumped by every ``invalidate_all``.

        A reader that records it before loading and passes it back to
        ``set`` cannot resurrect data loaded before an invalidation.
        """
        return self._generation

    @staticmethod
    def make_key(
        severity: str | None = None,
        parameter: str | None = None,
        limit: int | None = None,
    ) -> str:
        """E.g. ``display_high_all_20``."""
        return f"display_{severity or 'all'}_{parameter or 'all'}_{limit if limit is not None else 'all'}"

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Any | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.expired(now):
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def set(
        self,
        key: str,
        value: Any,
        ttl: float | None = None,
        generation: int | None = None,
    ) -> bool:
        """Store a value.

        Args:
            key: Cache key.
            value: Value to cache.
            ttl: Per-entry lifetime (defaults to the cache TTL).
            generation: ``generation`` observed before the value was loaded.
                The value is dropped if the cache was invalidated since.

        Returns:
            True if the value was stored.
        """
        entry = CacheEntry(
            key=key,
            value=value,
            inserted_at=self._clock(),
            ttl=self._ttl if ttl is None else ttl,
        )
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._entries.pop(key, None)
            while len(self._entries) >= self._max_entries:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
            self._entries[key] = entry
        return True

    def invalidate_all(self) -> int:
        """Drop every entry.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._generation += 1
        return count
