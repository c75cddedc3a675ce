"""
Criteria mapping.

Translates the plain-dict criteria used by scopes, ``Model.where()`` and
``Request.where()`` into an expression tree and pushes it onto a query
builder:

    {"active": True}                   active = true
    {"deleted_at": None}               deleted_at is null
    {"id": [1, 2, 3]}                  id in (1, 2, 3)
    {"views": {"gte": 100}}            views >= 100
    {"views__gte": 100}                views >= 100
    {"or": [{"a": 1}, {"b": 2}]}       (a = 1 or b = 2)
    {"not": {"archived": True}}        not (archived = true)
"""

from functools import reduce
from typing import Any, Optional, TYPE_CHECKING

from activeorm.query.expressions import (
    OPERATORS,
    AndExpression,
    BooleanExpression,
    NotExpression,
    OrExpression,
    QueryExpression,
    parse_field_lookup,
)

if TYPE_CHECKING:
    from activeorm.backends.base import QueryBuilder
    from activeorm.models.model import Model


def _combine(cls, expressions: list) -> Optional[BooleanExpression]:
    expressions = [expr for expr in expressions if expr is not None]
    if not expressions:
        return None
    return reduce(cls, expressions)


def _resolve_column(key: str, model: Optional["Model"]) -> str:
    if model is None or "." in key:
        return key
    return model.resolve_column(key)


def _condition(column: str, value: Any) -> BooleanExpression:
    if isinstance(value, BooleanExpression):
        return value
    if value is None:
        return QueryExpression(column, "null")
    if isinstance(value, (list, tuple, set, frozenset)):
        return QueryExpression(column, "in", list(value))
    if isinstance(value, dict) and value and all(op in OPERATORS for op in value):
        parts = []
        for op, operand in value.items():
            if op in ("null", "notnull"):
                # {"null": False} reads as "is not null"
                if operand is False:
                    op = "notnull" if op == "null" else "null"
                parts.append(QueryExpression(column, op))
            else:
                parts.append(QueryExpression(column, op, operand))
        return _combine(AndExpression, parts)
    return QueryExpression(column, "eq", value)


def build_expression(criteria: Any, model: Optional["Model"] = None) -> Optional[BooleanExpression]:
    """
    Build an expression tree from a criteria mapping.

    Args:
        criteria: Criteria dict, a list of criteria dicts (AND-ed), or an
            already-built expression
        model: Optional model used to resolve field names to qualified columns

    Returns:
        The expression, or None when the criteria is empty
    """
    if criteria is None:
        return None
    if isinstance(criteria, BooleanExpression):
        return criteria
    if isinstance(criteria, (list, tuple)):
        return _combine(AndExpression, [build_expression(c, model) for c in criteria])
    if not isinstance(criteria, dict):
        raise TypeError(f"Unsupported criteria type: {type(criteria).__name__}")

    parts: list[Optional[BooleanExpression]] = []
    for key, value in criteria.items():
        if key == "and":
            parts.append(_combine(AndExpression, [build_expression(c, model) for c in value]))
        elif key == "or":
            parts.append(_combine(OrExpression, [build_expression(c, model) for c in value]))
        elif key == "not":
            inner = build_expression(value, model)
            if inner is not None:
                parts.append(NotExpression(inner))
        else:
            field, operator = parse_field_lookup(key)
            column = _resolve_column(field, model)
            if operator == "eq":
                parts.append(_condition(column, value))
            else:
                parts.append(_condition(column, {operator: value}))
    return _combine(AndExpression, parts)


def apply_criteria(
    builder: "QueryBuilder",
    criteria: Any,
    mode: str = "and",
    model: Optional["Model"] = None,
) -> "QueryBuilder":
    """
    Push criteria onto a query builder.

    Args:
        builder: Target query builder
        criteria: Criteria mapping (see module docstring)
        mode: ``and``, ``or`` or ``not``; how the predicate joins the
            builder's existing where clauses
        model: Optional model for field-to-column resolution

    Returns:
        The builder, for chaining
    """
    expression = build_expression(criteria, model)
    if expression is None:
        return builder
    if mode == "or":
        return builder.or_where(expression)
    if mode == "not":
        return builder.where_not(expression)
    return builder.where(expression)
