"""
Cache Store - TTL key/value store with pattern eviction.

Provides:
- get / set with per-entry TTL in milliseconds
- Lazy eviction: an expired entry is removed on the access that finds it
- delete_by_pattern for bulk invalidation (all pages of a series)
- Entry introspection and hit/miss statistics
- Namespaced views, one per network

Writes are synchronous: a set is visible to the next get in the same
tick. The store is only touched from the event loop, every operation is
a single step, so no locking is needed.
"""

import logging
import re
from typing import Any, Awaitable, Callable, Optional, Pattern, TypeVar, Union

from chain_metrics.clock import ClockProtocol, get_clock
from chain_metrics.models import CacheEntry, CacheEntryInfo, CacheStats


logger = logging.getLogger(__name__)

T = TypeVar("T")

PatternLike = Union[str, Pattern[str]]

DEFAULT_TTL_MS = 5 * 60 * 1000


def _estimate_size(value: Any) -> int:
    """Number of items for sized values, 1 otherwise."""
    try:
        return len(value)
    except TypeError:
        return 1


class CacheStore:
    """
    Process-lifetime TTL cache.

    Usage:
        cache = CacheStore()
        cache.set("tvl-30D-page-0", points, ttl_ms=300_000)
        points = cache.get("tvl-30D-page-0")
        cache.delete_by_pattern(r"^tvl-30D-page-")
    """

    def __init__(
        self,
        default_ttl_ms: int = DEFAULT_TTL_MS,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._default_ttl_ms = default_ttl_ms
        self._clock = clock or get_clock()
        self._hits = 0
        self._misses = 0

    @property
    def clock(self) -> ClockProtocol:
        return self._clock

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when absent or expired."""
        entry = self._entries.get(key)
        now = self._clock.now_ms()

        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(now):
            del self._entries[key]
            self._misses += 1
            logger.debug(f"[cache] Expired {key} (age {entry.age_ms(now)}ms > {entry.ttl_ms}ms)")
            return None

        entry.hits += 1
        entry.last_accessed = now
        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        """Store a value. Overwrites any existing entry for the key."""
        now = self._clock.now_ms()
        ttl = self._default_ttl_ms if ttl_ms is None else ttl_ms
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            written_at=now,
            ttl_ms=ttl,
            last_accessed=now,
        )
        logger.debug(f"[cache] Set {key}, TTL {ttl}ms, {len(self._entries)} entries")

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> bool:
        """Remove one key. Returns True if it existed."""
        return self._entries.pop(key, None) is not None

    def keys_by_pattern(self, pattern: PatternLike) -> list[str]:
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        return [key for key in self._entries if regex.search(key)]

    def delete_by_pattern(self, pattern: PatternLike) -> int:
        """Remove every key matching the regular expression. Returns the count."""
        keys = self.keys_by_pattern(pattern)
        for key in keys:
            del self._entries[key]
        logger.debug(f"[cache] Deleted {len(keys)} entries matching {pattern!r}")
        return len(keys)

    def get_entry_info(self, key: str) -> Optional[CacheEntryInfo]:
        """Timestamp and size of a live entry, None when absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        now = self._clock.now_ms()
        if entry.is_expired(now):
            del self._entries[key]
            return None

        return CacheEntryInfo(
            timestamp=entry.written_at,
            size=_estimate_size(entry.value),
            age_ms=entry.age_ms(now),
            ttl_remaining_ms=max(0, entry.ttl_ms - entry.age_ms(now)),
        )

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        ttl_ms: Optional[int] = None,
    ) -> T:
        """Return the cached value or compute, store and return it."""
        cached = self.get(key)
        if cached is not None:
            return cached

        value = await factory()
        self.set(key, value, ttl_ms)
        return value

    def clear(self) -> None:
        size = len(self._entries)
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        logger.debug(f"[cache] Cleared {size} entries")

    def stats(self) -> CacheStats:
        """Aggregate statistics over the store."""
        now = self._clock.now_ms()
        written = [entry.written_at for entry in self._entries.values()]
        total_requests = self._hits + self._misses

        return CacheStats(
            total_entries=len(self._entries),
            total_hits=self._hits,
            total_misses=self._misses,
            hit_rate=(self._hits / total_requests * 100) if total_requests > 0 else 0.0,
            oldest_entry=min(written) if written else None,
            newest_entry=max(written) if written else None,
            expired_entries=sum(1 for entry in self._entries.values() if entry.is_expired(now)),
        )

    def namespace(self, prefix: str) -> "NamespacedCache":
        return NamespacedCache(self, prefix)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"<CacheStore(entries={len(self._entries)}, hits={self._hits}, misses={self._misses})>"


class NamespacedCache:
    """
    View of a CacheStore under a key prefix.

    Keys and patterns are expressed without the prefix; pattern deletion
    never reaches outside the namespace.
    """

    SEPARATOR = ":"

    def __init__(self, store: CacheStore, prefix: str) -> None:
        self._store = store
        self._prefix = f"{prefix}{self.SEPARATOR}"

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def clock(self) -> ClockProtocol:
        return self._store.clock

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        return self._store.get(self._key(key))

    def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        self._store.set(self._key(key), value, ttl_ms)

    def has(self, key: str) -> bool:
        return self._store.has(self._key(key))

    def delete(self, key: str) -> bool:
        return self._store.delete(self._key(key))

    def get_entry_info(self, key: str) -> Optional[CacheEntryInfo]:
        return self._store.get_entry_info(self._key(key))

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        ttl_ms: Optional[int] = None,
    ) -> T:
        return await self._store.get_or_set(self._key(key), factory, ttl_ms)

    def delete_by_pattern(self, pattern: PatternLike) -> int:
        """Remove keys in this namespace whose unprefixed part matches."""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        keys = [
            key for key in self._store.keys_by_pattern(f"^{re.escape(self._prefix)}")
            if regex.search(key[len(self._prefix):])
        ]
        for key in keys:
            self._store.delete(key)
        logger.debug(f"[cache:{self._prefix}] Deleted {len(keys)} entries matching {pattern!r}")
        return len(keys)

    def clear(self) -> int:
        return self._store.delete_by_pattern(f"^{re.escape(self._prefix)}")
