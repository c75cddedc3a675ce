"""
Storage backends for activeorm.

A backend hands out table-bound query builders and transaction handles.
The in-memory backend is the reference implementation.
"""

from activeorm.backends.base import (
    Backend,
    BackendError,
    DuplicateKeyError,
    QueryBuilder,
    ReturningNotSupportedError,
)
from activeorm.backends.memory import InMemoryBackend, InMemoryQueryBuilder

__all__ = [
    "Backend",
    "BackendError",
    "DuplicateKeyError",
    "QueryBuilder",
    "ReturningNotSupportedError",
    "InMemoryBackend",
    "InMemoryQueryBuilder",
]
