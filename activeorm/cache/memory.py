"""
In-process cache store.

A TTL-respecting dict plus a tag index. Values are deep-copied on the way in
and out so callers cannot mutate cached snapshots.
"""

import logging
import time
from copy import deepcopy
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from activeorm.cache.base import CacheAdapter

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: Any
    created: float
    expires: float


class InMemoryCache(CacheAdapter):
    """
    Dict-backed cache for tests and single-process deployments.

    Example:
        >>> cache = InMemoryCache()
        >>> cache.set("Users:1", {"id": 1}, ttl=60)
        True
        >>> cache.get("Users:1")
        {'id': 1}
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._tags: dict[str, set[str]] = {}

    def now(self) -> float:
        return self._clock()

    def get(self, key: str, evict_timestamp: Optional[float] = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.expires < self._clock():
            self.delete(key)
            return None

        # invalidated by a later model-level marker
        if evict_timestamp and entry.created <= evict_timestamp:
            logger.debug("Cache entry %s evicted by marker %s", key, evict_timestamp)
            self.delete(key)
            return None

        return deepcopy(entry.value)

    def set(self, key: str, value: Any, ttl: float) -> bool:
        now = self._clock()
        self._entries[key] = _Entry(deepcopy(value), now, now + ttl)
        return True

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)
        for keys in self._tags.values():
            keys.discard(key)

    def tag_key(self, key: str, tags: Iterable[str]) -> None:
        for tag in tags:
            self._tags.setdefault(tag, set()).add(key)

    def tag_invalidate(self, tags: Iterable[str]) -> None:
        for tag in tags:
            for key in self._tags.pop(tag, set()):
                self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
        self._tags.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
