"""Cache stores for activeorm."""

from activeorm.cache.base import CacheAdapter, NoOpCache
from activeorm.cache.memory import InMemoryCache

__all__ = [
    "CacheAdapter",
    "NoOpCache",
    "InMemoryCache",
]
