"""Last-known-good result cache for graceful degradation."""

from smartpoll.cache.store import CachedValue, CacheEntry, CacheStats, CacheStore

__all__ = ["CacheEntry", "CacheStats", "CacheStore", "CachedValue"]
