"""
Base backend interface for activeorm.

Defines the abstract storage collaborator: a Backend hands out fluent
QueryBuilder objects bound to one table, and transaction handles of the same
shape. Query builders only record structure (``_statements``); execution is
left to each backend's ``execute()``.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from activeorm.exceptions import OrmError
from activeorm.query.expressions import BooleanExpression, quote_identifier


class BackendError(OrmError):
    """Base exception for backend errors."""
    pass


class DuplicateKeyError(BackendError):
    """Raised when attempting to insert a row whose primary key already exists."""
    pass


class ReturningNotSupportedError(BackendError):
    """Raised when ``insert().returning()`` is not supported by the backend."""
    pass


class Backend(ABC):
    """
    Abstract base class for storage backends.

    Attributes:
        supports_returning: Whether ``insert(...).returning(...)`` works
        query_count: Number of queries executed through this backend
    """

    supports_returning: bool = True

    def __init__(self):
        self.query_count = 0
        self.isolation_level: Optional[str] = None

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Backend identifier."""
        pass

    @abstractmethod
    def query(self, table: str) -> "QueryBuilder":
        """
        Create a query builder bound to a table.

        Args:
            table: Table name

        Returns:
            QueryBuilder instance for fluent query construction

        Example:
            >>> rows = await backend.query("users").where({"active": True}).limit(10)
        """
        pass

    @abstractmethod
    def transaction(self, isolation_level: Optional[str] = None) -> "Backend":
        """
        Open a transaction.

        Args:
            isolation_level: Optional isolation level hint

        Returns:
            A backend handle scoped to the transaction; call ``commit()`` or
            ``rollback()`` on it when the work is done
        """
        pass

    async def commit(self) -> None:
        """Commit a transaction handle."""
        pass

    async def rollback(self) -> None:
        """Roll back a transaction handle."""
        pass

    async def close(self) -> None:
        """Release connections held by the backend."""
        pass

    def reset_query_count(self) -> None:
        self.query_count = 0


class QueryBuilder(ABC):
    """
    Abstract fluent query builder.

    Every chainable method records a statement and returns the builder.
    Awaiting the builder executes it once through ``execute()``.

    Statements are dicts keyed by ``grouping``: ``where``, ``columns``,
    ``join``, ``order``, ``limit``, ``offset`` and ``distinct``.
    """

    def __init__(self, backend: Backend, table: str):
        """
        Initialize query builder.

        Args:
            backend: Backend executing the query
            table: Table the query is bound to
        """
        self.backend = backend
        self.table = table
        self._statements: list[dict[str, Any]] = []
        self._method = "select"
        self._payload: Any = None
        self._returning: Optional[list[str]] = None
        self._include_relations: set[str] = set()

    # -- predicates -------------------------------------------------------

    def _where(self, criteria: Any, bool_: str, negate: bool) -> "QueryBuilder":
        if not isinstance(criteria, BooleanExpression):
            from activeorm.query.criteria import build_expression
            criteria = build_expression(criteria)
            if criteria is None:
                return self
        self._statements.append({
            "grouping": "where",
            "bool": bool_,
            "not": negate,
            "value": criteria,
        })
        return self

    def where(self, criteria: Any = None, **conditions: Any) -> "QueryBuilder":
        """
        Add a predicate joined with AND.

        Args:
            criteria: Expression or criteria mapping
            **conditions: Extra equality / lookup conditions (``age__gte=18``)

        Returns:
            Self for method chaining
        """
        if criteria is not None:
            self._where(criteria, "and", False)
        if conditions:
            self._where(conditions, "and", False)
        return self

    def or_where(self, criteria: Any) -> "QueryBuilder":
        """Add a predicate joined with OR."""
        return self._where(criteria, "or", False)

    def where_not(self, criteria: Any) -> "QueryBuilder":
        """Add a negated predicate joined with AND."""
        return self._where(criteria, "and", True)

    # -- shape ------------------------------------------------------------

    def join(self, table: str, left: str, right: str, kind: str = "inner") -> "QueryBuilder":
        """
        Join another table.

        Example:
            >>> qb.join("profiles", "profiles.user_id", "users.id")
        """
        self._statements.append({
            "grouping": "join",
            "type": kind,
            "table": table,
            "left": left,
            "right": right,
        })
        return self

    def left_join(self, table: str, left: str, right: str) -> "QueryBuilder":
        return self.join(table, left, right, kind="left")

    def select(self, *columns: Any) -> "QueryBuilder":
        """
        Select specific columns (projection).

        Accepts column names, ``table.column`` and ``column as alias``, as
        separate arguments or as one list.
        """
        flat: list[str] = []
        for column in columns:
            if isinstance(column, (list, tuple)):
                flat.extend(column)
            else:
                flat.append(column)
        if flat:
            self._statements.append({"grouping": "columns", "value": flat})
        return self

    def distinct(self, *columns: Any) -> "QueryBuilder":
        if not any(s["grouping"] == "distinct" for s in self._statements):
            self._statements.append({"grouping": "distinct", "value": True})
        return self.select(*columns)

    def order_by(self, column: str, direction: str = "ASC") -> "QueryBuilder":
        """
        Order results by a column.

        Args:
            column: Column name
            direction: ``ASC`` or ``DESC`` (case-insensitive)
        """
        self._statements.append({
            "grouping": "order",
            "value": column,
            "direction": direction.upper(),
        })
        return self

    def _single(self, grouping: str, value: Any) -> "QueryBuilder":
        self._statements = [s for s in self._statements if s["grouping"] != grouping]
        self._statements.append({"grouping": grouping, "value": value})
        return self

    def limit(self, n: int) -> "QueryBuilder":
        return self._single("limit", n)

    def offset(self, n: int) -> "QueryBuilder":
        return self._single("offset", n)

    # -- methods ----------------------------------------------------------

    def first(self, *columns: Any) -> "QueryBuilder":
        """Return only the first row (or None)."""
        self._method = "first"
        self.select(*columns)
        return self.limit(1)

    def count(self) -> "QueryBuilder":
        """Return the number of matching rows."""
        self._method = "count"
        return self

    def insert(self, data: Any) -> "QueryBuilder":
        """Insert one row (dict) or many rows (list of dicts)."""
        self._method = "insert"
        self._payload = data
        return self

    def returning(self, *columns: str) -> "QueryBuilder":
        self._returning = list(columns)
        return self

    def update(self, data: dict[str, Any]) -> "QueryBuilder":
        """Update matching rows with the given column values."""
        self._method = "update"
        self._payload = data
        return self

    def delete(self) -> "QueryBuilder":
        """Delete matching rows."""
        self._method = "del"
        return self

    # -- introspection ----------------------------------------------------

    def _grouped(self, grouping: str) -> list[dict[str, Any]]:
        return [s for s in self._statements if s["grouping"] == grouping]

    def to_sql(self) -> dict[str, Any]:
        """
        Compile the query to SQL text with ``?`` placeholders.

        Returns:
            Dict with ``method``, ``sql`` and ``bindings`` keys
        """
        bindings: list[Any] = []
        table = quote_identifier(self.table)

        where_sql = ""
        for index, statement in enumerate(self._grouped("where")):
            sql, values = statement["value"].to_sql()
            if statement["not"]:
                sql = f"not ({sql})"
            where_sql += sql if index == 0 else f" {statement['bool']} {sql}"
            bindings.extend(values)
        where_sql = f" where {where_sql}" if where_sql else ""

        if self._method == "insert":
            rows = self._payload if isinstance(self._payload, list) else [self._payload or {}]
            columns = list(rows[0]) if rows else []
            values_sql = ", ".join(
                "(" + ", ".join("?" for _ in columns) + ")" for _ in rows
            )
            for row in rows:
                bindings.extend(row.get(c) for c in columns)
            sql = (
                f"insert into {table} ("
                + ", ".join(quote_identifier(c) for c in columns)
                + f") values {values_sql}"
            )
            if self._returning:
                sql += " returning " + ", ".join(quote_identifier(c) for c in self._returning)
            return {"method": self._method, "sql": sql, "bindings": bindings}

        if self._method == "update":
            sets = ", ".join(f"{quote_identifier(c)} = ?" for c in self._payload)
            sql = f"update {table} set {sets}{where_sql}"
            return {
                "method": self._method,
                "sql": sql,
                "bindings": list(self._payload.values()) + bindings,
            }

        if self._method == "del":
            return {"method": self._method, "sql": f"delete from {table}{where_sql}", "bindings": bindings}

        columns = [c for s in self._grouped("columns") for c in s["value"]]
        if self._method == "count":
            projection = "count(*)"
        elif columns:
            projection = ", ".join(
                quote_identifier(c) if " as " not in c else c for c in columns
            )
        else:
            projection = "*"
        if self._grouped("distinct"):
            projection = f"distinct {projection}"

        sql = f"select {projection} from {table}"
        for join in self._grouped("join"):
            kind = "left join" if join["type"] == "left" else "inner join"
            sql += (
                f" {kind} {quote_identifier(join['table'])} on "
                f"{quote_identifier(join['left'])} = {quote_identifier(join['right'])}"
            )
        sql += where_sql
        orders = self._grouped("order")
        if orders:
            sql += " order by " + ", ".join(
                f"{quote_identifier(o['value'])} {o['direction'].lower()}" for o in orders
            )
        for grouping in ("limit", "offset"):
            statements = self._grouped(grouping)
            if statements:
                sql += f" {grouping} ?"
                bindings.append(statements[-1]["value"])
        return {"method": self._method, "sql": sql, "bindings": bindings}

    def __str__(self) -> str:
        compiled = self.to_sql()
        sql = compiled["sql"]
        for value in compiled["bindings"]:
            sql = sql.replace("?", repr(value), 1)
        return sql

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.table} {self._method}>"

    # -- execution --------------------------------------------------------

    @abstractmethod
    async def execute(self) -> Any:
        """
        Execute the query.

        Returns:
            ``select``: list of row dicts; ``first``: a row dict or None;
            ``count``: int; ``insert``: list of primary keys, or list of
            dicts when ``returning()`` was used; ``update`` / ``del``: number
            of affected rows
        """
        pass

    def __await__(self):
        return self.execute().__await__()
