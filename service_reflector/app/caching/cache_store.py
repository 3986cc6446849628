"""
Bounded in-memory response cache with per-entry expiry and LRU eviction.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from shared.logging import get_logger

from service_reflector.app.domain.results import UpstreamResult, Success

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class CacheEntry:
    """Immutable snapshot of a cached origin response."""

    body: bytes
    status: int
    content_type: str
    stored_at: float
    expires_at: float
    last_access: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at

    def remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)

    def age(self, now: float) -> float:
        return max(0.0, now - self.stored_at)


class CacheStore:
    """Thread-safe LRU store owning the lifetime of every cached entry.

    Entries are returned as frozen dataclasses, so callers can never mutate
    what the store holds. Stale entries are dropped on read and purged before
    capacity eviction; when the store is still full the least recently
    accessed entry goes first, ties broken by the oldest ``stored_at``.
    """

    def __init__(
        self,
        max_entries: int = 25,
        *,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional["MetricsCollector"] = None,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.logger = get_logger("reflector.cache_store")
        self.metrics = metrics
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the fresh entry for ``key`` or ``None``."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if not entry.is_fresh(now):
                del self._entries[key]
                self._misses += 1
                self._update_size_locked()
                self.logger.debug("Cache entry expired", key=key, expired_for=round(now - entry.expires_at, 3))
                return None

            entry = replace(entry, last_access=now)
            self._entries[key] = entry
            self._entries.move_to_end(key)
            self._hits += 1
            return entry

    def put(self, key: str, entry: CacheEntry) -> None:
        """Insert or replace ``key``, evicting as needed to respect capacity."""
        if not 200 <= entry.status < 300:
            raise ValueError(f"Refusing to cache non-2xx status {entry.status}")

        with self._lock:
            if key in self._entries:
                del self._entries[key]
            else:
                self._evict_locked(incoming=1)
            self._entries[key] = entry
            self._update_size_locked()

        self.logger.debug("Cached response", key=key, ttl=round(entry.expires_at - entry.stored_at, 3))

    def store(self, key: str, result: UpstreamResult, ttl_seconds: float) -> Optional[CacheEntry]:
        """Cache a successful origin result; failures are ignored."""
        if not isinstance(result, Success) or not 200 <= result.status < 300:
            return None

        now = self._clock()
        entry = CacheEntry(
            body=result.body,
            status=result.status,
            content_type=result.content_type,
            stored_at=now,
            expires_at=now + max(ttl_seconds, 0.0),
            last_access=now,
        )
        self.put(key, entry)
        return entry

    def evict_if_needed(self) -> int:
        """Purge expired entries and trim the store to capacity."""
        with self._lock:
            evicted = self._evict_locked(incoming=0)
            self._update_size_locked()
        return evicted

    def invalidate(self, key: str) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            self._update_size_locked()
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._update_size_locked()

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def _evict_locked(self, incoming: int) -> int:
        now = self._clock()
        evicted = 0

        expired = [key for key, entry in self._entries.items() if not entry.is_fresh(now)]
        for key in expired:
            del self._entries[key]
            evicted += 1

        while self._entries and len(self._entries) + incoming > self.max_entries:
            # OrderedDict keeps access order, so min() resolves exact ties by position.
            victim, _ = min(
                self._entries.items(),
                key=lambda item: (item[1].last_access, item[1].stored_at),
            )
            del self._entries[victim]
            evicted += 1
            self._evictions += 1
            if self.metrics:
                self.metrics.increment_counter("reflector_cache_evictions_total")
            self.logger.debug("Evicted least recently used entry", key=victim)

        return evicted

    def _update_size_locked(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("reflector_cache_entries", len(self._entries))
