"""
In-memory backend for activeorm.

Simple dict-based storage for testing and examples without requiring
external services. Tables are lists of row dicts; primary keys
auto-increment per table.
"""

import logging
import re
from copy import deepcopy
from typing import Any, Optional

from activeorm.backends.base import (
    Backend,
    BackendError,
    DuplicateKeyError,
    QueryBuilder,
    ReturningNotSupportedError,
)
from activeorm.query.expressions import (
    AndExpression,
    NotExpression,
    OrExpression,
    QueryExpression,
)

logger = logging.getLogger(__name__)


class InMemoryBackend(Backend):
    """
    In-memory storage backend using Python dicts.

    Stores all data in memory. Data is lost when the process ends.
    Useful for testing and examples.

    Example:
        >>> backend = InMemoryBackend()
        >>> await backend.query("users").insert({"name": "Alice"})
        [1]
        >>> await backend.query("users").where({"name": "Alice"}).first()
        {'name': 'Alice', 'id': 1}
    """

    def __init__(
        self,
        supports_returning: bool = True,
        primary_keys: Optional[dict[str, str]] = None,
    ):
        """
        Initialize in-memory backend.

        Args:
            supports_returning: When False, ``insert().returning()`` raises
                ReturningNotSupportedError the way SQLite drivers do
            primary_keys: Primary key column per table (default ``id``)
        """
        super().__init__()
        self.supports_returning = supports_returning
        self._primary_keys: dict[str, str] = dict(primary_keys or {})
        # Storage: {table: [row, ...]}
        self._tables: dict[str, list[dict[str, Any]]] = {}
        self._sequences: dict[str, int] = {}
        self._parent: Optional["InMemoryBackend"] = None
        self._finished = False

    @property
    def backend_name(self) -> str:
        """Backend identifier."""
        return 'memory'

    def primary_key(self, table: str) -> str:
        return self._primary_keys.get(table, 'id')

    def set_primary_key(self, table: str, column: str) -> None:
        self._primary_keys[table] = column

    def _get_table(self, table: str) -> list[dict[str, Any]]:
        """Get the live row list for a table, creating it on first use."""
        if table not in self._tables:
            self._tables[table] = []
        return self._tables[table]

    def rows(self, table: str) -> list[dict[str, Any]]:
        """Return a copy of every row stored in a table."""
        return deepcopy(self._tables.get(table, []))

    def _next_id(self, table: str) -> int:
        self._sequences[table] = self._sequences.get(table, 0) + 1
        return self._sequences[table]

    def _bump_sequence(self, table: str, value: Any) -> None:
        if isinstance(value, int) and value > self._sequences.get(table, 0):
            self._sequences[table] = value

    def _count_query(self) -> None:
        backend: Optional[InMemoryBackend] = self
        while backend is not None:
            backend.query_count += 1
            backend = backend._parent

    def query(self, table: str) -> "InMemoryQueryBuilder":
        """Create a query builder for this backend."""
        if self._finished:
            raise BackendError("Transaction already finished")
        return InMemoryQueryBuilder(self, table)

    def transaction(self, isolation_level: Optional[str] = None) -> "InMemoryBackend":
        """
        Open a transaction working on a snapshot of every table.

        Writes made through the handle become visible to this backend on
        ``commit()`` and are discarded on ``rollback()``.
        """
        handle = InMemoryBackend(self.supports_returning, self._primary_keys)
        handle._tables = deepcopy(self._tables)
        handle._sequences = dict(self._sequences)
        handle._parent = self
        handle.isolation_level = isolation_level
        logger.debug(f"Opened in-memory transaction (isolation={isolation_level})")
        return handle

    async def commit(self) -> None:
        if self._parent is None:
            raise BackendError("Cannot commit: not a transaction handle")
        if self._finished:
            raise BackendError("Transaction already finished")
        self._parent._tables = self._tables
        self._parent._sequences = self._sequences
        self._finished = True

    async def rollback(self) -> None:
        if self._parent is None:
            raise BackendError("Cannot roll back: not a transaction handle")
        self._tables = {}
        self._finished = True

    def clear(self, table: Optional[str] = None) -> None:
        """
        Clear storage.

        Args:
            table: Optional table to clear. If None, clears all.
        """
        if table:
            self._tables.pop(table, None)
            self._sequences.pop(table, None)
        else:
            self._tables.clear()
            self._sequences.clear()


def _like(value: Any, pattern: str, flags: int = 0) -> bool:
    if value is None:
        return False
    regex = "".join(
        ".*" if char == "%" else "." if char == "_" else re.escape(char)
        for char in pattern
    )
    return re.fullmatch(regex, str(value), flags | re.DOTALL) is not None


def _compare(record_value: Any, operator: str, value: Any) -> bool:
    """Evaluate one column operator against a value, SQL-style for NULLs."""
    if operator == "null":
        return record_value is None
    if operator == "notnull":
        return record_value is not None
    if operator == "eq":
        return record_value == value
    if operator == "ne":
        return record_value is not None and record_value != value
    if operator == "in":
        return record_value in value
    if operator == "nin":
        return record_value is not None and record_value not in value
    if operator == "like":
        return _like(record_value, value)
    if operator == "ilike":
        return _like(record_value, value, re.IGNORECASE)
    if record_value is None:
        return False
    if operator == "gt":
        return record_value > value
    if operator == "gte":
        return record_value >= value
    if operator == "lt":
        return record_value < value
    if operator == "lte":
        return record_value <= value
    if operator == "between":
        low, high = value
        return low <= record_value <= high
    if operator == "nbetween":
        low, high = value
        return not (low <= record_value <= high)
    raise BackendError(f"Unsupported operator: {operator}")


class InMemoryQueryBuilder(QueryBuilder):
    """
    Query builder for in-memory backend.

    Performs joins, filtering, sorting, projection and pagination in Python.
    """

    backend: InMemoryBackend

    def _namespaced(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Expose a row under both bare and ``table.column`` keys."""
        result = dict(row)
        for key, value in row.items():
            result[f"{table}.{key}"] = value
        return result

    def _matches(self, expr: Any, row: dict[str, Any]) -> bool:
        if isinstance(expr, AndExpression):
            return self._matches(expr.left, row) and self._matches(expr.right, row)
        if isinstance(expr, OrExpression):
            return self._matches(expr.left, row) or self._matches(expr.right, row)
        if isinstance(expr, NotExpression):
            return not self._matches(expr.expr, row)
        if isinstance(expr, QueryExpression):
            return _compare(row.get(expr.field), expr.operator, expr.value)
        raise BackendError(f"Unsupported expression: {expr!r}")

    def _filter(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        wheres = self._grouped("where")
        if not wheres:
            return rows
        result = []
        for row in rows:
            include = None
            for statement in wheres:
                matched = self._matches(statement["value"], row)
                if statement["not"]:
                    matched = not matched
                if include is None:
                    include = matched
                elif statement["bool"] == "or":
                    include = include or matched
                else:
                    include = include and matched
            if include:
                result.append(row)
        return result

    def _joined_rows(self) -> list[tuple[dict[str, Any], dict[str, Any]]]:
        """Return (working row, base row) pairs after applying joins."""
        base_rows = self.backend._get_table(self.table)
        rows = [(self._namespaced(self.table, r), r) for r in base_rows]
        for join in self._grouped("join"):
            other = self.backend._get_table(join["table"])
            joined = []
            for working, base in rows:
                matches = []
                for other_row in other:
                    candidate = self._namespaced(join["table"], other_row)
                    left = working.get(join["left"], candidate.get(join["left"]))
                    right = working.get(join["right"], candidate.get(join["right"]))
                    if left is not None and left == right:
                        matches.append(candidate)
                if not matches and join["type"] == "left":
                    matches = [{}]
                for candidate in matches:
                    merged = dict(candidate)
                    merged.update(working)
                    joined.append((merged, base))
            rows = joined
        return rows

    def _project(self, working: dict[str, Any], base: dict[str, Any]) -> dict[str, Any]:
        columns = [c for s in self._grouped("columns") for c in s["value"]]
        if not columns:
            return deepcopy(base)
        result = {}
        for column in columns:
            if column == "*":
                result.update(deepcopy(base))
                continue
            source, _, alias = column.partition(" as ")
            source = source.strip()
            key = alias.strip() or source.rsplit(".", 1)[-1]
            result[key] = deepcopy(working.get(source))
        return result

    def _select(self) -> list[dict[str, Any]]:
        pairs = self._joined_rows()
        pairs = [(w, b) for w, b in pairs if self._filter([w])]

        for order in reversed(self._grouped("order")):
            column = order["value"]
            pairs.sort(
                key=lambda pair: (pair[0].get(column) is None, pair[0].get(column)),
                reverse=order["direction"] == "DESC",
            )

        results = [self._project(w, b) for w, b in pairs]
        if self._grouped("distinct"):
            seen = set()
            unique = []
            for row in results:
                marker = repr(sorted(row.items(), key=lambda item: item[0]))
                if marker not in seen:
                    seen.add(marker)
                    unique.append(row)
            results = unique

        offset = self._grouped("offset")
        if offset and offset[-1]["value"]:
            results = results[offset[-1]["value"]:]
        limit = self._grouped("limit")
        if limit and limit[-1]["value"] is not None:
            results = results[:limit[-1]["value"]]
        return results

    def _insert(self) -> list[Any]:
        table = self.backend._get_table(self.table)
        pk = self.backend.primary_key(self.table)
        if self._returning and not self.backend.supports_returning:
            raise ReturningNotSupportedError(
                f"RETURNING is not supported by the {self.backend.backend_name} backend"
            )

        rows = self._payload if isinstance(self._payload, list) else [self._payload or {}]
        results = []
        for data in rows:
            row = deepcopy(data)
            if row.get(pk) is None:
                row[pk] = self.backend._next_id(self.table)
            elif any(existing.get(pk) == row[pk] for existing in table):
                raise DuplicateKeyError(
                    f"Duplicate key {row[pk]!r} for table {self.table}"
                )
            else:
                self.backend._bump_sequence(self.table, row[pk])
            table.append(row)
            if self._returning:
                results.append({c: deepcopy(row.get(c)) for c in self._returning})
            else:
                results.append(row[pk])
        return results

    def _matching_base_rows(self) -> list[dict[str, Any]]:
        table = self.backend._get_table(self.table)
        return [r for r in table if self._filter([self._namespaced(self.table, r)])]

    async def execute(self) -> Any:
        """Execute the query against the in-memory tables."""
        self.backend._count_query()
        logger.debug(f"memory {self._method} on {self.table}")

        if self._method == "insert":
            return self._insert()

        if self._method == "update":
            matched = self._matching_base_rows()
            for row in matched:
                row.update(deepcopy(self._payload))
            return len(matched)

        if self._method == "del":
            matched = self._matching_base_rows()
            ids = {id(row) for row in matched}
            table = self.backend._get_table(self.table)
            table[:] = [row for row in table if id(row) not in ids]
            return len(matched)

        if self._method == "count":
            return len(self._select())

        results = self._select()
        if self._method == "first":
            return results[0] if results else None
        return results
