"""In-memory result cache with per-entry expiry.

Entries are evicted lazily: an expired entry is dropped the next time it
is read. There is no background sweep and no single-flight protection,
so concurrent misses for the same key may each call the fetch function.
"""

import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union
from urllib.parse import urlencode

logger = logging.getLogger(__name__)


class CacheTTL:
    """Standard time-to-live values in seconds."""

    QUICK_METRICS = 30
    KPI_METRICS = 60
    REFERENCE_DATA = 300
    STATIC_DATA = 3600


@dataclass
class CacheEntry:
    key: str
    data: Any
    expires_at: float


FetchFn = Callable[[], Union[Any, Awaitable[Any]]]


class ResultCache:
    """Key/value store whose entries expire after a TTL.

    Args:
        clock: Returns the current time as epoch seconds
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            logger.debug(f"Cache entry expired: {key}")
            return None
        return entry

    def get(self, key: str) -> Any:
        """Return the cached value, or None when missing or expired."""
        entry = self._lookup(key)
        return entry.data if entry is not None else None

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store a value, replacing any existing entry."""
        self._entries[key] = CacheEntry(
            key=key,
            data=value,
            expires_at=self._clock() + ttl_seconds,
        )

    async def get_or_set(self, key: str, fetch_fn: FetchFn, ttl_seconds: float) -> Any:
        """Return the cached value or fetch, store and return a fresh one.

        Args:
            key: Cache key
            fetch_fn: Coroutine function or plain callable producing the value
            ttl_seconds: Lifetime of a freshly fetched value

        Returns:
            The cached or freshly fetched value
        """
        entry = self._lookup(key)
        if entry is not None:
            logger.debug(f"Cache hit: {key}")
            return entry.data

        logger.debug(f"Cache miss: {key}")
        data = fetch_fn()
        if inspect.isawaitable(data):
            data = await data
        self.set(key, data, ttl_seconds)
        return data

    def delete(self, key: str) -> bool:
        """Remove a key; returns whether it was present."""
        return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with ``prefix``; returns the count."""
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cache entries with prefix {prefix}")
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> Dict[str, Any]:
        keys: List[str] = list(self._entries)
        return {"size": len(keys), "keys": keys}


def generate_cache_key(endpoint: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Build a deterministic key from an endpoint and its parameters.

    Parameters are sorted by name so that ordering never changes the key.
    """
    if not params:
        return endpoint
    return f"{endpoint}?{urlencode(sorted(params.items()))}"
