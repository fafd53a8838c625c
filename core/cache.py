#!/usr/bin/env python3
"""
core/cache.py — Short-lived cache for resolved Abilities.

Features:
- TTL-based caching (default 60s)
- Actor + context + registry generation keying
- Bounded size with oldest-first eviction
- Thread-safe operations
- Metrics tracking
"""

import time
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from core.metrics import increment_counter

CacheKey = Tuple[Hashable, Hashable, int]


@dataclass
class CacheEntry:
    """Single cache entry with TTL."""
    key: CacheKey
    value: Any
    created_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        """Check if entry is expired."""
        return (now - self.created_at) >= self.ttl_seconds


class AbilityCache:
    """
    Short-lived cache for resolved Abilities.

    The registry generation is part of every key, so a reconfiguration
    makes every earlier entry unreachable; entries from older generations
    are also purged eagerly when a newer generation is seen.
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        max_entries: int = 1024,
        cleanup_interval: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize ability cache.

        Args:
            ttl_seconds: TTL for cached abilities (seconds)
            max_entries: Maximum number of cached abilities
            cleanup_interval: How often to cleanup expired entries (seconds)
            clock: Monotonic time source
        """
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        if max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")

        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.cleanup_interval = cleanup_interval
        self._clock = clock

        self._entries: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self._newest_generation = 0

        # Thread safety
        self._lock = threading.RLock()

        # Cleanup tracking
        self._last_cleanup = clock()

    @staticmethod
    def make_key(actor: Hashable, context: Hashable, generation: int) -> CacheKey:
        """Build the cache key for an actor/context at a registry generation."""
        return (actor, context, generation)

    def _cleanup_expired(self, now: float, force: bool = False):
        """
        Cleanup expired entries.

        Args:
            now: Current clock value
            force: Force cleanup regardless of interval
        """
        if not force and (now - self._last_cleanup) < self.cleanup_interval:
            return

        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self._last_cleanup = now

        if expired:
            increment_counter("rbac.ability_cache.expired", value=len(expired))

    def _purge_older_generations(self, generation: int):
        if generation <= self._newest_generation:
            return
        self._newest_generation = generation
        stale = [key for key in self._entries if key[2] < generation]
        for key in stale:
            del self._entries[key]
        if stale:
            increment_counter("rbac.ability_cache.invalidated", value=len(stale),
                              labels={"trigger": "generation"})

    def get(self, key: CacheKey) -> Optional[Any]:
        """
        Get a cached ability.

        Args:
            key: Key from ``make_key``

        Returns:
            Cached value or None if missing, expired, or stale
        """
        with self._lock:
            now = self._clock()
            self._purge_older_generations(key[2])
            self._cleanup_expired(now)

            entry = self._entries.get(key)
            if entry is None:
                increment_counter("rbac.ability_cache.misses")
                return None

            if entry.is_expired(now):
                del self._entries[key]
                increment_counter("rbac.ability_cache.misses", labels={"reason": "expired"})
                return None

            increment_counter("rbac.ability_cache.hits")
            return entry.value

    def set(self, key: CacheKey, value: Any):
        """
        Cache an ability.

        Args:
            key: Key from ``make_key``
            value: Ability to cache
        """
        with self._lock:
            if key[2] < self._newest_generation:
                # Resolved under a configuration that has since been replaced.
                return
            self._purge_older_generations(key[2])

            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                created_at=self._clock(),
                ttl_seconds=self.ttl_seconds,
            )
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                increment_counter("rbac.ability_cache.evicted")

    def clear(self):
        """Clear all cache entries."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            increment_counter("rbac.ability_cache.invalidated", value=count,
                              labels={"trigger": "manual"})

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache stats
        """
        with self._lock:
            return {
                "count": len(self._entries),
                "max_entries": self.max_entries,
                "ttl": self.ttl_seconds,
                "newest_generation": self._newest_generation,
                "last_cleanup": self._last_cleanup,
            }
