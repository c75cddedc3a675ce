"""
Cache adapter interface.

Models that declare ``cache`` store record snapshots and query results
through a CacheAdapter. Implementations must honor the eviction marker:
an entry created at or before ``evict_timestamp`` is treated as a miss even
if its TTL has not elapsed yet.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional


class CacheAdapter(ABC):
    """
    Abstract cache store.

    Timestamps are seconds since the epoch as returned by ``time.time()``.
    """

    def now(self) -> float:
        """Current time on the clock entries are stamped with."""
        return time.time()

    @abstractmethod
    def get(self, key: str, evict_timestamp: Optional[float] = None) -> Any:
        """
        Get a value from the cache.

        Args:
            key: Cache key
            evict_timestamp: Entries created at or before this time are misses

        Returns:
            The cached value, or None on a miss
        """
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl: float) -> bool:
        """
        Store a value.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live in seconds

        Returns:
            True if the value was stored
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a single key."""
        pass

    def expire(self, key: str) -> None:
        """Alias of delete() used by record unlinking."""
        self.delete(key)

    @abstractmethod
    def tag_key(self, key: str, tags: Iterable[str]) -> None:
        """Associate a key with tags for bulk invalidation."""
        pass

    @abstractmethod
    def tag_invalidate(self, tags: Iterable[str]) -> None:
        """Drop every key associated with any of the given tags."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry."""
        pass


class NoOpCache(CacheAdapter):
    """Cache that accepts every call and never hits."""

    def get(self, key: str, evict_timestamp: Optional[float] = None) -> Any:
        return None

    def set(self, key: str, value: Any, ttl: float) -> bool:
        return False

    def delete(self, key: str) -> None:
        pass

    def tag_key(self, key: str, tags: Iterable[str]) -> None:
        pass

    def tag_invalidate(self, tags: Iterable[str]) -> None:
        pass

    def clear(self) -> None:
        pass
