import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable

from relmap.config import get_env_int

CacheKey = Tuple[str, str, str]


@dataclass
class CacheEntry:
    """Cache entry with value and expiry time."""

    value: Any
    expires_at: float


@runtime_checkable
class ResultCacheBackend(Protocol):
    """Protocol for result cache storage backends."""

    def get(self, key: CacheKey) -> Optional[Any]:
        """Fetch a cached entry."""
        ...

    def set(self, key: CacheKey, value: Any, ttl: int) -> None:
        """Store a cached entry."""
        ...

    def clear(self, table: Optional[str] = None) -> int:
        """Invalidate entries for a table (or all) and return the count removed."""
        ...


class InMemoryResultCacheBackend:
    """Bounded LRU dictionary with per-entry expiry."""

    def __init__(self, max_entries: int = 1000) -> None:
        """Initialize with max entries."""
        self._max_entries = max_entries
        self._cache: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self._logger = logging.getLogger(__name__)

    def get(self, key: CacheKey) -> Optional[Any]:
        """Get entry, dropping it when expired."""
        entry = self._cache.get(key)
        if entry is None:
            return None
        if time.time() >= entry.expires_at:
            self._cache.pop(key, None)
            return None
        self._cache.move_to_end(key)
        return entry.value

    def set(self, key: CacheKey, value: Any, ttl: int) -> None:
        """Set entry with an absolute expiry."""
        if key in self._cache:
            self._cache.pop(key, None)
        self._cache[key] = CacheEntry(value=value, expires_at=time.time() + ttl)
        self._cache.move_to_end(key)
        self._evict_if_needed()

    def clear(self, table: Optional[str] = None) -> int:
        """Clear entries for one table, or everything when table is None."""
        if table is None:
            count = len(self._cache)
            self._cache.clear()
            return count
        keys_to_remove = [k for k in self._cache.keys() if k[0] == table]
        for k in keys_to_remove:
            self._cache.pop(k, None)
        return len(keys_to_remove)

    def _evict_if_needed(self) -> None:
        if self._max_entries <= 0:
            return
        while len(self._cache) > self._max_entries:
            key, _ = self._cache.popitem(last=False)
            self._logger.info("result_cache_evict table=%s key=%s", key[0], key)

    def __len__(self) -> int:
        """Return number of entries."""
        return len(self._cache)


def fingerprint(*args: Any) -> str:
    """Deterministic serialization of call arguments."""
    return json.dumps(list(args), default=str, separators=(",", ":"), sort_keys=True)


class ResultCache:
    """TTL-bounded memo of point lookups keyed by (table, operation, fingerprint).

    Only positive hits are stored. Records are copied on the way in and out so
    callers cannot mutate cached state.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        max_entries: Optional[int] = None,
        backend: Optional[ResultCacheBackend] = None,
    ) -> None:
        """Initialize cache with TTL and optional size limits or custom backend."""
        if ttl_seconds is None:
            ttl_seconds = get_env_int("RELMAP_CACHE_TTL_SECONDS", 600)
        self._default_ttl = ttl_seconds

        if max_entries is None:
            max_entries = get_env_int("RELMAP_CACHE_MAX_ENTRIES", 1000)

        self._backend = backend or InMemoryResultCacheBackend(max_entries=max_entries or 1000)
        self._logger = logging.getLogger(__name__)

    @property
    def enabled(self) -> bool:
        """Return True when entries are kept at all."""
        return self._default_ttl > 0

    def ttl_for_table(self, table: str) -> int:
        """Get TTL for a table from RELMAP_CACHE_TTL_<TABLE> or the default."""
        return get_env_int(f"RELMAP_CACHE_TTL_{table.upper()}", self._default_ttl)

    @staticmethod
    def key(table: str, operation: str, *args: Any) -> CacheKey:
        """Build a cache key for a call."""
        return (table, operation, fingerprint(*args))

    def get(self, key: CacheKey) -> Optional[Dict[str, Any]]:
        """Fetch a cached record if it is still valid."""
        if not self.enabled:
            return None
        value = self._backend.get(key)
        if value is None:
            return None
        self._logger.debug("result_cache_hit table=%s operation=%s", key[0], key[1])
        return dict(value)

    def set(self, key: CacheKey, value: Optional[Dict[str, Any]]) -> None:
        """Store a found record with the table's TTL; absences are not cached."""
        if value is None or not self.enabled:
            return
        ttl = self.ttl_for_table(key[0])
        if ttl <= 0:
            return
        self._backend.set(key, dict(value), ttl)

    def invalidate(self, table: Optional[str] = None) -> int:
        """Drop cached entries for one table, or all tables."""
        count = self._backend.clear(table=table)
        if count:
            self._logger.info("result_cache_invalidate table=%s entries=%d", table, count)
        return count
