"""CacheStore — last-known-good results keyed by task id."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class CacheEntry:
    """One cached result.

    Attributes:
        key: Task id the value belongs to.
        value: The last successful result.
        stored_at: Epoch seconds when the value was written.
        ttl_ms: Freshness window in milliseconds.
        metadata: Free-form details about the write (source, task id...).
    """

    key: str
    value: Any
    stored_at: float
    ttl_ms: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def age_ms(self, now: float) -> float:
        return max(0.0, (now - self.stored_at) * 1000)

    def is_fresh(self, now: float) -> bool:
        return self.age_ms(now) < self.ttl_ms

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl_ms / 1000


@dataclass(frozen=True)
class CachedValue:
    """Result of :meth:`CacheStore.get_with_age` — value plus how old it is."""

    value: Any
    age_ms: float
    is_stale: bool
    is_expired: bool
    entry: CacheEntry


@dataclass(frozen=True)
class CacheStats:
    total_entries: int
    hits: int
    misses: int
    hit_rate: float
    miss_rate: float
    oldest_stored_at: float | None
    newest_stored_at: float | None


class CacheStore:
    """In-memory key/value cache with TTL and age queries.

    ``get`` only returns fresh values. Expired values stay readable through
    ``get_with_age`` (for degraded mode) until they outlive *retention_ms*,
    at which point they are evicted lazily on the next read. There is no
    background sweep; ``cleanup`` can be called explicitly.

    Args:
        default_ttl_ms: TTL used when ``set`` is called without one.
        max_entries: Upper bound; the oldest entry is evicted to make room.
        stale_fraction: Fraction of the TTL after which a fresh value counts
            as stale.
        retention_ms: How long an expired value is kept for degraded reads.
        clock: Returns the current time in epoch seconds (injectable for tests).
    """

    def __init__(
        self,
        *,
        default_ttl_ms: float = 300000,
        max_entries: int = 100,
        stale_fraction: float = 0.8,
        retention_ms: float = 3600000,
        clock: Clock = time.time,
    ) -> None:
        if max_entries < 1:
            msg = f"max_entries must be at least 1, got {max_entries}"
            raise ValueError(msg)
        self._entries: dict[str, CacheEntry] = {}
        self._default_ttl_ms = default_ttl_ms
        self._max_entries = max_entries
        self._stale_fraction = stale_fraction
        self._retention_ms = retention_ms
        self._clock = clock
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    # -- Writes ----------------------------------------------------------------

    def set(
        self,
        key: str,
        value: Any,
        ttl_ms: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CacheEntry:
        """Store *value* under *key*, replacing any previous entry."""
        if key not in self._entries:
            while len(self._entries) >= self._max_entries:
                self._evict_oldest()
        entry = CacheEntry(
            key=key,
            value=value,
            stored_at=self._clock(),
            ttl_ms=ttl_ms or self._default_ttl_ms,
            metadata=dict(metadata or {}),
        )
        self._entries[key] = entry
        return entry

    def touch(self, key: str, ttl_ms: float | None = None) -> bool:
        """Restart the freshness window of an existing entry."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        entry.stored_at = self._clock()
        if ttl_ms:
            entry.ttl_ms = ttl_ms
        return True

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def cleanup(self) -> int:
        """Drop every entry past the retention window. Returns the count removed."""
        now = self._clock()
        doomed = [key for key, entry in self._entries.items() if self._past_retention(entry, now)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug("Cache cleanup removed %d entr(ies)", len(doomed))
        return len(doomed)

    # -- Reads -----------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        """Return the value for *key* if it is still fresh, else None."""
        entry = self._read(key)
        if entry is None or not entry.is_fresh(self._clock()):
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def get_with_age(self, key: str) -> CachedValue | None:
        """Return the value and its age whether or not it is still fresh."""
        entry = self._read(key)
        if entry is None:
            return None
        now = self._clock()
        age = entry.age_ms(now)
        return CachedValue(
            value=entry.value,
            age_ms=age,
            is_stale=age > entry.ttl_ms * self._stale_fraction,
            is_expired=not entry.is_fresh(now),
            entry=entry,
        )

    def is_stale(self, key: str) -> bool:
        cached = self.get_with_age(key)
        return cached is not None and cached.is_stale

    def get_expiring(self, within_ms: float = 60000) -> list[CacheEntry]:
        """Fresh entries whose TTL runs out within *within_ms*."""
        now = self._clock()
        horizon = now + within_ms / 1000
        return [
            entry
            for entry in self._entries.values()
            if entry.is_fresh(now) and entry.expires_at <= horizon
        ]

    def entries(self) -> list[CacheEntry]:
        return list(self._entries.values())

    def stats(self) -> CacheStats:
        total = self._hits + self._misses
        stamps = [entry.stored_at for entry in self._entries.values()]
        return CacheStats(
            total_entries=len(self._entries),
            hits=self._hits,
            misses=self._misses,
            hit_rate=self._hits / total if total else 0.0,
            miss_rate=self._misses / total if total else 0.0,
            oldest_stored_at=min(stamps) if stamps else None,
            newest_stored_at=max(stamps) if stamps else None,
        )

    # -- Internal --------------------------------------------------------------

    def _read(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is not None and self._past_retention(entry, self._clock()):
            del self._entries[key]
            logger.debug("Evicted expired cache entry: %s", key)
            return None
        return entry

    def _past_retention(self, entry: CacheEntry, now: float) -> bool:
        return entry.age_ms(now) >= entry.ttl_ms + self._retention_ms

    def _evict_oldest(self) -> None:
        oldest = min(self._entries.values(), key=lambda entry: entry.stored_at)
        del self._entries[oldest.key]
        logger.debug("Cache full; evicted oldest entry: %s", oldest.key)
