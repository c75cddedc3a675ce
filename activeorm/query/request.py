"""
Request: one query in flight against a model.

A Request wraps a backend query builder. Builder methods it does not define
itself are forwarded, and a forwarded call that returns the builder returns
the request so chains keep working:

    users = await repo.Users.where({"active": True}).order_by("name").limit(10)

Awaiting the request executes it exactly once: scopes are resolved, the
default projection is applied, the cache is consulted, and rows are wrapped
into records through ``Model.allocate``. Awaiting it again returns the same
result.
"""

import asyncio
import functools
import json
import logging
from typing import Any, Optional, TYPE_CHECKING

from activeorm.exceptions import NoScopesError
from activeorm.query.criteria import apply_criteria

if TYPE_CHECKING:
    from activeorm.backends.base import QueryBuilder
    from activeorm.models.model import Model
    from activeorm.query.scopes import ScopeOptions

logger = logging.getLogger(__name__)

_WRITE_METHODS = ("insert", "update", "upsert", "del", "delete")


class Request:
    """
    Lazily executed, chainable query bound to a model.

    Attributes:
        model: Model the rows are wrapped into
        query_builder: Underlying backend query builder
    """

    def __init__(self, model: "Model", query_builder: "QueryBuilder"):
        self.model = model
        self.query_builder = query_builder
        self._scope_requests: list[Any] = []
        self._apply_default_scope = False
        self._scopes_applied = False
        self._cache_ttl: Optional[float] = None
        self._task: Optional[asyncio.Future] = None

    def __getattr__(self, name: str) -> Any:
        if name == "query_builder":
            raise AttributeError(name)
        attr = getattr(self.query_builder, name)
        if not callable(attr):
            return attr

        @functools.wraps(attr)
        def forward(*args, **kwargs):
            result = attr(*args, **kwargs)
            return self if result is self.query_builder else result

        return forward

    # -- building ---------------------------------------------------------

    def where(self, criteria: Any = None, **conditions: Any) -> "Request":
        """AND criteria, resolving field names to qualified columns."""
        if criteria is not None:
            apply_criteria(self.query_builder, criteria, "and", self.model)
        if conditions:
            apply_criteria(self.query_builder, conditions, "and", self.model)
        return self

    def or_where(self, criteria: Any) -> "Request":
        apply_criteria(self.query_builder, criteria, "or", self.model)
        return self

    def where_not(self, criteria: Any) -> "Request":
        apply_criteria(self.query_builder, criteria, "not", self.model)
        return self

    def scope(self, *scope_requests: Any) -> "Request":
        """
        Attach more scopes to this request.

        Raises:
            NoScopesError: If the model declares no scopes
        """
        if self.model.scope_builder is None:
            raise NoScopesError(self.model.name)
        self._scope_requests.extend(scope_requests)
        return self

    def unscoped(self) -> "Request":
        """Skip the default scope for this request."""
        self._apply_default_scope = False
        return self

    def cache(self, ttl: Optional[float] = None) -> "Request":
        """
        Opt this query into result caching.

        Args:
            ttl: Seconds to keep the result; the configured request TTL
                (5 seconds by default) when omitted
        """
        self._set_cache(True if ttl is None else ttl)
        return self

    def _set_cache(self, value: Any) -> None:
        if value is True:
            self._cache_ttl = self.model.repo.settings.request_cache_ttl
        elif not value:
            self._cache_ttl = None
        else:
            self._cache_ttl = value

    def include(self, relations: Any) -> "Request":
        """Mark one relation name, or a list of them, for loading."""
        if isinstance(relations, str):
            relations = [relations]
        self.query_builder._include_relations.update(relations)
        return self

    @property
    def state(self) -> str:
        """``unexecuted``, ``executing`` or ``resolved``."""
        if self._task is None:
            return "unexecuted"
        return "resolved" if self._task.done() else "executing"

    # -- scopes -----------------------------------------------------------

    def _apply_scopes(self) -> Optional["ScopeOptions"]:
        if self._scopes_applied:
            return None
        self._scopes_applied = True
        builder = self.model.scope_builder
        if builder is None:
            return None
        if not self._scope_requests and not self._apply_default_scope:
            return None

        options = builder.apply_scopes(self, self._scope_requests, self._apply_default_scope)
        query = self.query_builder
        if options.where:
            apply_criteria(query, options.where, "and", self.model)
        for include in options.include or []:
            query._include_relations.add(include.relation)
        if "cache" in options.model_fields_set:
            self._set_cache(options.cache)
        for column, direction in options.order or []:
            query.order_by(self.model.resolve_column(column), direction)
        if options.limit is not None:
            query.limit(options.limit)
        if options.offset is not None:
            query.offset(options.offset)
        if options.attributes:
            query.select([self.model.resolve_column(name) for name in options.attributes])
        return options

    # -- execution --------------------------------------------------------

    def _cache_key(self) -> str:
        query = self.query_builder
        shape = {"method": query._method, "statements": query._statements}
        return f"{self.model.name}:" + json.dumps(shape, sort_keys=True, default=str)

    def _apply_default_projection(self) -> None:
        query = self.query_builder
        if query._method not in ("select", "first") or query._grouped("columns"):
            return
        model = self.model
        if model.cache is not None:
            # cached records hydrate from the cache, only keys are needed
            columns = [model.primary_field.column]
            if model.discriminator is not None:
                columns.append(model.discriminator.column)
        else:
            columns = list(model.columns)
        columns = [f"{model.table}.{column}" for column in columns]
        if query._grouped("join"):
            query.distinct(columns)
        else:
            query.select(columns)

    def _wrap_row(self, row: Any) -> Any:
        from activeorm.models.record import Record
        if isinstance(row, Record) or not isinstance(row, dict):
            return row
        fields = self.model.fields.values()
        if not any(f.name in row or f.column in row for f in fields):
            return row
        return self.model.allocate(row)

    async def _wrap(self, result: Any) -> Any:
        from activeorm.models.record import Record
        if isinstance(result, list):
            wrapped = [self._wrap_row(row) for row in result]
            records = [item for item in wrapped if isinstance(item, Record)]
            await asyncio.gather(*(record.ready() for record in records))
            # keys cleared by hydration belong to rows that no longer exist
            return [
                item for item in wrapped
                if not isinstance(item, Record) or item._pk is not None
            ]
        item = self._wrap_row(result)
        if isinstance(item, Record):
            await item.ready()
            if item._pk is None:
                return None
        return item

    async def _execute(self) -> Any:
        model = self.model
        query = self.query_builder
        self._apply_scopes()

        wrap = query._method not in _WRITE_METHODS
        cache = model.cache if wrap and self._cache_ttl else None
        key = None
        if cache is not None:
            key = self._cache_key()
            hit = cache.get(key, model._eviction_marker())
            if hit is not None:
                logger.debug(f"Request cache hit {key}")
                return await self._wrap(hit)

        if wrap:
            self._apply_default_projection()
        result = await query
        if cache is not None:
            cache.set(key, result, max(1, self._cache_ttl))
        if not wrap:
            return result
        return await self._wrap(result)

    def __await__(self):
        if self._task is None:
            self._task = asyncio.ensure_future(self._execute())
        return self._task.__await__()

    # -- introspection ----------------------------------------------------

    def to_sql(self) -> dict[str, Any]:
        """Compiled SQL of the query with scopes applied."""
        self._apply_scopes()
        return self.query_builder.to_sql()

    def __str__(self) -> str:
        self._apply_scopes()
        return str(self.query_builder)

    def __repr__(self) -> str:
        return f"<Request {self.model.name} {self.state}>"
