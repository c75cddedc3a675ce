"""
Query expression objects.

Predicates handed to a query builder form a small boolean tree: leaf
QueryExpression nodes combined with AndExpression, OrExpression and
NotExpression. Backends either evaluate the tree directly (in-memory) or
compile it with ``to_sql()``.
"""

from typing import Any


# Supported operators and their SQL spelling
OPERATORS = {
    "eq": "=",
    "ne": "<>",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "in": "in",
    "nin": "not in",
    "between": "between",
    "nbetween": "not between",
    "like": "like",
    "ilike": "ilike",
    "null": "is null",
    "notnull": "is not null",
}


def parse_field_lookup(field_lookup: str) -> tuple[str, str]:
    """
    Parse a field lookup string into field name and operator.

    Only a known operator suffix is split off, so column names that happen
    to contain a double underscore are left alone.

    Args:
        field_lookup: Field lookup string (e.g., "age__gte")

    Returns:
        Tuple of (field_name, operator)

    Example:
        >>> parse_field_lookup("age__gte")
        ('age', 'gte')
        >>> parse_field_lookup("name")
        ('name', 'eq')
    """
    if "__" in field_lookup:
        field, operator = field_lookup.rsplit("__", 1)
        if operator in OPERATORS:
            return field, operator
    return field_lookup, "eq"


def quote_identifier(column: str) -> str:
    """Quote a possibly table-qualified column name."""
    return ".".join(f'"{part}"' for part in column.split("."))


class BooleanExpression:
    """Base class for boolean expressions with operator support."""

    def __and__(self, other: Any) -> "AndExpression":
        """Combine with AND: expr & other"""
        return AndExpression(self, other)

    def __or__(self, other: Any) -> "OrExpression":
        """Combine with OR: expr | other"""
        return OrExpression(self, other)

    def __invert__(self) -> "NotExpression":
        """Negate: ~expr"""
        return NotExpression(self)

    def to_sql(self) -> tuple[str, list[Any]]:
        raise NotImplementedError


class QueryExpression(BooleanExpression):
    """
    A single column predicate.

    Example: QueryExpression("users.age", "gte", 25) renders as
    ``"users"."age" >= ?`` with bindings ``[25]``.
    """

    def __init__(self, field: str, operator: str, value: Any = None):
        """
        Initialize query expression.

        Args:
            field: Column name, optionally qualified with the table
            operator: Operator name (one of OPERATORS)
            value: Value to compare against

        Raises:
            ValueError: If the operator is unknown
        """
        if operator not in OPERATORS:
            raise ValueError(f"Unknown query operator '{operator}'")
        self.field = field
        self.operator = operator
        self.value = value

    def to_sql(self) -> tuple[str, list[Any]]:
        column = quote_identifier(self.field)
        op = OPERATORS[self.operator]
        if self.operator in ("null", "notnull"):
            return f"{column} {op}", []
        if self.operator in ("in", "nin"):
            values = list(self.value)
            placeholders = ", ".join("?" for _ in values)
            return f"{column} {op} ({placeholders})", values
        if self.operator in ("between", "nbetween"):
            low, high = self.value
            return f"{column} {op} ? and ?", [low, high]
        return f"{column} {op} ?", [self.value]

    def __repr__(self) -> str:
        return f"<{self.field} {self.operator} {self.value!r}>"


class AndExpression(BooleanExpression):
    """Represents AND combination: (expr1) & (expr2)"""

    def __init__(self, left: Any, right: Any):
        self.left = left
        self.right = right

    def to_sql(self) -> tuple[str, list[Any]]:
        left_sql, left_bindings = self.left.to_sql()
        right_sql, right_bindings = self.right.to_sql()
        return f"({left_sql} and {right_sql})", left_bindings + right_bindings

    def __repr__(self) -> str:
        return f"({self.left} AND {self.right})"


class OrExpression(BooleanExpression):
    """Represents OR combination: (expr1) | (expr2)"""

    def __init__(self, left: Any, right: Any):
        self.left = left
        self.right = right

    def to_sql(self) -> tuple[str, list[Any]]:
        left_sql, left_bindings = self.left.to_sql()
        right_sql, right_bindings = self.right.to_sql()
        return f"({left_sql} or {right_sql})", left_bindings + right_bindings

    def __repr__(self) -> str:
        return f"({self.left} OR {self.right})"


class NotExpression(BooleanExpression):
    """Represents NOT: ~expr"""

    def __init__(self, expr: Any):
        self.expr = expr

    def __invert__(self) -> Any:
        """Double negation returns original: ~~a == a"""
        return self.expr

    def to_sql(self) -> tuple[str, list[Any]]:
        sql, bindings = self.expr.to_sql()
        return f"not ({sql})", bindings

    def __repr__(self) -> str:
        return f"NOT ({self.expr})"
