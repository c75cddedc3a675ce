"""
activeorm - async active-record ORM.

Declarative model definitions become storage-backed records with dirty
tracking, class-table inheritance, mixins, composable scopes and a
cache-aware query layer.
"""

from activeorm.backends import Backend, InMemoryBackend, QueryBuilder
from activeorm.cache import CacheAdapter, InMemoryCache, NoOpCache
from activeorm.config import Settings
from activeorm.exceptions import (
    AbstractModelError,
    DiscriminatorError,
    NoScopesError,
    OrmError,
    RegistrationError,
    SchemaError,
    ScopeError,
    ScopeNotFoundError,
    UnknownFieldError,
    ValidationError,
)
from activeorm.fields import UNSET, Field, register_field_type
from activeorm.mixins import SoftDeletable, Timestampable
from activeorm.models import Model, Record
from activeorm.query import Request, ScopeBuilder, ScopeOptions
from activeorm.repository import Connection, Repository

__version__ = "0.1.0"

__all__ = [
    "Backend",
    "InMemoryBackend",
    "QueryBuilder",
    "CacheAdapter",
    "InMemoryCache",
    "NoOpCache",
    "Settings",
    "OrmError",
    "RegistrationError",
    "SchemaError",
    "UnknownFieldError",
    "DiscriminatorError",
    "AbstractModelError",
    "ScopeError",
    "ScopeNotFoundError",
    "NoScopesError",
    "ValidationError",
    "UNSET",
    "Field",
    "register_field_type",
    "SoftDeletable",
    "Timestampable",
    "Model",
    "Record",
    "Request",
    "ScopeBuilder",
    "ScopeOptions",
    "Connection",
    "Repository",
]
