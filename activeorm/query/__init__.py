"""Query construction: expressions, criteria, scopes and requests."""

from activeorm.query.criteria import apply_criteria, build_expression
from activeorm.query.expressions import (
    OPERATORS,
    AndExpression,
    BooleanExpression,
    NotExpression,
    OrExpression,
    QueryExpression,
    parse_field_lookup,
)
from activeorm.query.request import Request
from activeorm.query.scopes import IncludeOption, ScopeBuilder, ScopeOptions

__all__ = [
    "OPERATORS",
    "AndExpression",
    "BooleanExpression",
    "NotExpression",
    "OrExpression",
    "QueryExpression",
    "parse_field_lookup",
    "apply_criteria",
    "build_expression",
    "IncludeOption",
    "ScopeBuilder",
    "ScopeOptions",
    "Request",
]
