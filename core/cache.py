"""
Query signature cache with TTL.

Keys are an md5 over the endpoint and the key-sorted JSON of the query
parameters, so logically identical queries share an entry regardless of
parameter order. Entries expire lazily on read. When the cache is full the
oldest insertion is evicted before a new entry is written.
"""

import hashlib
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheTTL:
    """TTL tiers in seconds."""
    short: float = 60.0
    default: float = 300.0
    long: float = 1800.0


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: Any
    created_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


@dataclass(frozen=True)
class CachedResult:
    data: Any
    cached: bool
    cache_key: Optional[str] = None


def make_key(endpoint: str, params: Mapping[str, Any]) -> str:
    """Stable signature for an endpoint + parameter set."""
    serialized = json.dumps(params, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.md5(f"{endpoint}:{serialized}".encode("utf-8")).hexdigest()


class QueryCache:
    """
    In-process TTL cache with bounded size.

    Args:
        max_size: Maximum number of entries
        default_ttl: TTL in seconds when set() is not given one
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: float = CacheTTL.default,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.expired(self._clock())

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for ``key``, dropping it if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    def set(self, key: str, payload: Any, ttl: Optional[float] = None) -> CacheEntry:
        # Replacing a key re-inserts it at the young end
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Cache full, evicted {evicted}")

        entry = CacheEntry(
            key=key,
            payload=payload,
            created_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )
        self._entries[key] = entry
        return entry

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        expired = sum(1 for entry in self._entries.values() if entry.expired(now))
        return {
            "total": len(self._entries),
            "valid": len(self._entries) - expired,
            "expired": expired,
            "max_size": self.max_size,
        }


async def with_cache(
    cache: Optional[QueryCache],
    endpoint: str,
    params: Mapping[str, Any],
    producer: Callable[[], Awaitable[Any]],
    ttl: Optional[float] = None,
    skip_cache: bool = False,
) -> CachedResult:
    """
    Serve ``producer()`` through the cache.

    A hit within the TTL returns immediately with ``cached=True``. On a miss
    the producer runs and its result is stored. Any failure of the cache
    itself is logged and the call proceeds uncached; producer errors
    propagate unchanged.
    """
    key = None
    if cache is not None:
        try:
            key = make_key(endpoint, params)
            if not skip_cache:
                entry = cache.get(key)
                if entry is not None:
                    logger.debug(f"Cache hit for {endpoint} ({key})")
                    return CachedResult(data=entry.payload, cached=True, cache_key=key)
        except (TypeError, ValueError) as e:
            logger.warning(f"Query cache unavailable for {endpoint}: {e}")
            key = None

    data = await producer()

    if cache is not None and key is not None:
        try:
            cache.set(key, data, ttl)
        except (TypeError, ValueError) as e:
            logger.warning(f"Could not cache result for {endpoint}: {e}")

    return CachedResult(data=data, cached=False, cache_key=key)
