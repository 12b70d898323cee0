"""
RequestCache - TTL cache of successful operation results.

Features:
- Keys are "<operation>:<canonical params>" so a whole operation can be
  invalidated by prefix
- Entries expire lazily on read and through a periodic sweep (ttl/2)
- Negative results (success=False) are never stored
- Size-bounded with oldest-entry eviction
"""

import hashlib
from dataclasses import dataclass
from typing import Any

from loguru import logger

from seatsync.services.clock import Clock, SystemClock
from seatsync.services.results import is_negative
from seatsync.utils import stable_serialize

MAX_PARAMS_KEY_LENGTH = 200


@dataclass(frozen=True)
class CacheEntry:
    """A single cache entry. Replaced or deleted, never mutated."""

    key: str
    value: Any
    stored_at: float

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.stored_at > ttl


class RequestCache:
    """
    Cache of operation results keyed by operation and parameters.

    Usage:
        cache = RequestCache(ttl=60)

        key = cache.generate_key("getSeatData", ["G1", "1", "A", False])
        entry = cache.get(key)
        if entry is not None:
            return entry.value

        result = await fetch()
        cache.set(key, result)
    """

    def __init__(
        self,
        ttl: float = 60.0,
        max_size: int = 500,
        clock: Clock | None = None,
        debug: bool = False,
    ):
        self._entries: dict[str, CacheEntry] = {}
        self._ttl = ttl
        self._max_size = max_size
        self._clock = clock or SystemClock()
        self._debug = debug
        self._stats = CacheStats()

        # Bumped on invalidation; a result computed under an older generation is stale
        self._generations: dict[str, int] = {}
        self._epoch = 0

    @property
    def ttl(self) -> float:
        return self._ttl

    @property
    def sweep_interval(self) -> float:
        """Seconds between background sweeps."""
        return self._ttl / 2

    @staticmethod
    def generate_key(operation: str, params: list[Any] | None = None) -> str:
        """Generate a cache key from the operation name and its params."""
        serialized = stable_serialize(params if params is not None else [])

        # Hash long parameter lists, keeping the operation prefix intact
        if len(serialized) > MAX_PARAMS_KEY_LENGTH:
            serialized = "#" + hashlib.md5(serialized.encode()).hexdigest()

        return f"{operation}:{serialized}"

    def get(self, key: str) -> CacheEntry | None:
        """Get a live entry, or None on miss. Expired entries are dropped."""
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            self._log(f"MISS: {key[:50]}...")
            return None

        if entry.is_expired(self._clock.now(), self._ttl):
            del self._entries[key]
            self._stats.misses += 1
            self._log(f"EXPIRED: {key[:50]}...")
            return None

        self._stats.hits += 1
        self._log(f"HIT: {key[:50]}...")
        return entry

    def set(self, key: str, value: Any) -> bool:
        """
        Store a value.

        Returns:
            False when the value was a negative result and was not stored
        """
        if is_negative(value):
            self._log(f"SKIP negative result: {key[:50]}...")
            return False

        if len(self._entries) >= self._max_size and key not in self._entries:
            self._evict_oldest()

        self._entries[key] = CacheEntry(key=key, value=value, stored_at=self._clock.now())
        self._log(f"SET: {key[:50]}... (TTL: {self._ttl}s)")
        return True

    def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        if self._entries.pop(key, None) is not None:
            self._log(f"DELETE: {key[:50]}...")
            return True
        return False

    def generation(self, operation: str) -> tuple[int, int]:
        """Invalidation generation of an operation; changes on every purge."""
        return (self._epoch, self._generations.get(operation, 0))

    def invalidate_prefix(self, operation: str) -> int:
        """
        Delete every entry of an operation.

        Returns:
            Number of entries invalidated
        """
        self._generations[operation] = self._generations.get(operation, 0) + 1
        prefix = f"{operation}:"
        keys_to_delete = [k for k in self._entries if k.startswith(prefix)]
        for key in keys_to_delete:
            del self._entries[key]

        if keys_to_delete:
            logger.debug(
                f"[RequestCache] Invalidated {len(keys_to_delete)} entries of '{operation}'"
            )
        return len(keys_to_delete)

    def clear(self) -> None:
        """Clear all cache entries."""
        self._epoch += 1
        count = len(self._entries)
        self._entries.clear()
        self._log(f"CLEAR: {count} entries removed")

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        now = self._clock.now()
        expired_keys = [
            k for k, v in self._entries.items() if v.is_expired(now, self._ttl)
        ]
        for key in expired_keys:
            del self._entries[key]

        if expired_keys:
            self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")

        return len(expired_keys)

    def _evict_oldest(self) -> None:
        """Evict the oldest entry."""
        if not self._entries:
            return

        oldest_key = min(self._entries, key=lambda k: self._entries[k].stored_at)
        del self._entries[oldest_key]
        self._stats.evictions += 1
        self._log(f"EVICT: {oldest_key[:50]}...")

    def get_stats(self) -> "CacheStats":
        """Get cache statistics, counting valid and expired entries."""
        now = self._clock.now()
        expired = sum(1 for e in self._entries.values() if e.is_expired(now, self._ttl))
        self._stats.total_entries = len(self._entries)
        self._stats.expired_entries = expired
        self._stats.valid_entries = len(self._entries) - expired
        self._stats.max_size = self._max_size
        return self._stats

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[RequestCache] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    total_entries: int = 0
    valid_entries: int = 0
    expired_entries: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "total_entries": self.total_entries,
            "valid_entries": self.valid_entries,
            "expired_entries": self.expired_entries,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
