"""
Scope composition.

A scope is a named, reusable bundle of query options. Models declare them as
``scopes`` (name -> options or callable) plus an optional ``default_scope``.
ScopeBuilder resolves the scopes requested for one query into a single
ScopeOptions.

Merge policy:

* ``where`` clauses are AND-ed: appended to an existing top-level ``and``
  list, otherwise wrapped as ``{"and": [base, incoming]}``
* ``include`` lists are concatenated and de-duplicated by (relation, as);
  nested includes of duplicates are merged recursively
* ``cache``, ``order``, ``limit``, ``offset`` and ``attributes``: the last
  scope that sets them wins
"""

import logging
from typing import Any, Callable, Optional, Union, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, field_validator

from activeorm.exceptions import ScopeNotFoundError

if TYPE_CHECKING:
    from activeorm.models.model import Model
    from activeorm.query.request import Request

logger = logging.getLogger(__name__)


def _normalize_order(value: Any) -> Any:
    if value is None:
        return value
    result = []
    for item in value:
        if isinstance(item, str):
            result.append((item, "ASC"))
        else:
            column, direction = item
            result.append((column, str(direction).upper()))
    return result


class IncludeOption(BaseModel):
    """Relation to mark for loading, optionally with nested includes."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    relation: str
    as_: Optional[str] = Field(default=None, alias="as")
    required: Optional[bool] = None
    attributes: Optional[list[str]] = None
    through: Any = None
    include: Optional[list["IncludeOption"]] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
    order: Optional[list[tuple[str, str]]] = None

    @field_validator("include", mode="before")
    @classmethod
    def _strings_to_includes(cls, value: Any) -> Any:
        if value is None:
            return value
        return [{"relation": v} if isinstance(v, str) else v for v in value]

    @field_validator("order", mode="before")
    @classmethod
    def _order_pairs(cls, value: Any) -> Any:
        return _normalize_order(value)

    @property
    def key(self) -> tuple[str, str]:
        return self.relation, self.as_ or ""


class ScopeOptions(BaseModel):
    """
    Canonical query intent produced by scope resolution.

    Only the options a scope actually sets are recorded in
    ``model_fields_set``; unset options never override earlier ones.
    """

    model_config = ConfigDict(extra="forbid")

    where: Any = None
    include: Optional[list[IncludeOption]] = None
    cache: Optional[Union[bool, int, float]] = None
    order: Optional[list[tuple[str, str]]] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
    attributes: Optional[list[str]] = None

    @field_validator("include", mode="before")
    @classmethod
    def _strings_to_includes(cls, value: Any) -> Any:
        if value is None:
            return value
        if isinstance(value, (str, dict, IncludeOption)):
            value = [value]
        return [{"relation": v} if isinstance(v, str) else v for v in value]

    @field_validator("order", mode="before")
    @classmethod
    def _order_pairs(cls, value: Any) -> Any:
        return _normalize_order(value)

    @field_validator("order")
    @classmethod
    def _check_direction(cls, value: Any) -> Any:
        for column, direction in value or []:
            if direction not in ("ASC", "DESC"):
                raise ValueError(f"Invalid order direction {direction!r} for {column}")
        return value


ScopeDefinition = Union[ScopeOptions, dict, Callable[..., Any]]


def merge_where(base: Any, incoming: Any) -> Any:
    """AND two where clauses together."""
    if not base:
        return incoming
    if not incoming:
        return base
    if isinstance(base, dict) and len(base) == 1 and isinstance(base.get("and"), list):
        return {"and": [*base["and"], incoming]}
    return {"and": [base, incoming]}


def merge_includes(base: list[IncludeOption], incoming: list[IncludeOption]) -> list[IncludeOption]:
    """Concatenate include lists, merging duplicates by (relation, as)."""
    result = [inc.model_copy(deep=True) for inc in base]
    by_key = {inc.key: inc for inc in result}
    for inc in incoming:
        existing = by_key.get(inc.key)
        if existing is None:
            copy = inc.model_copy(deep=True)
            result.append(copy)
            by_key[copy.key] = copy
        elif inc.include:
            existing.include = merge_includes(existing.include or [], inc.include)
    return result


_LAST_WINS = ("cache", "order", "limit", "offset", "attributes")


def merge_options(base: ScopeOptions, incoming: ScopeOptions) -> ScopeOptions:
    """Merge ``incoming`` on top of ``base`` and return a new ScopeOptions."""
    values = {name: getattr(base, name) for name in base.model_fields_set}
    if incoming.where:
        values["where"] = merge_where(base.where, incoming.where)
    if incoming.include:
        values["include"] = merge_includes(base.include or [], incoming.include)
    for name in _LAST_WINS:
        if name in incoming.model_fields_set:
            values[name] = getattr(incoming, name)
    return ScopeOptions(**values)


class ScopeBuilder:
    """
    Resolves scope requests for one model.

    Example:
        >>> builder = ScopeBuilder(model, {"active": {"where": {"active": True}}})
        >>> builder.apply_scopes(request, ["active"]).where
        {'active': True}
    """

    def __init__(
        self,
        model: "Model",
        scopes: Optional[dict[str, ScopeDefinition]] = None,
        default_scope: Optional[ScopeDefinition] = None,
    ):
        self.model = model
        self.scopes: dict[str, ScopeDefinition] = dict(scopes or {})
        self.default_scope = default_scope

    def _normalize(self, definition: ScopeDefinition, request: "Request", args: list) -> ScopeOptions:
        if callable(definition) and not isinstance(definition, (dict, ScopeOptions)):
            from activeorm.query.request import Request
            result = definition(request, *args)
            # function scopes may mutate the query directly and return it
            if result is None or isinstance(result, Request):
                return ScopeOptions()
            definition = result
        if isinstance(definition, ScopeOptions):
            return definition
        return ScopeOptions.model_validate(definition)

    @staticmethod
    def _parse_request(scope_request: Any) -> tuple[str, list]:
        if isinstance(scope_request, str):
            return scope_request, []
        if isinstance(scope_request, dict) and len(scope_request) == 1:
            name, args = next(iter(scope_request.items()))
            if args is None:
                return name, []
            if isinstance(args, (list, tuple)):
                return name, list(args)
            return name, [args]
        raise TypeError(f"Invalid scope request: {scope_request!r}")

    def apply_scopes(
        self,
        request: "Request",
        scope_requests: list[Any],
        include_default: bool = True,
    ) -> ScopeOptions:
        """
        Resolve scopes into one ScopeOptions.

        Args:
            request: The request being built; passed to function scopes
            scope_requests: Scope names or ``{name: args}`` mappings, applied
                in order
            include_default: Whether the default scope is merged first

        Returns:
            Merged options

        Raises:
            ScopeNotFoundError: If a requested scope is not defined
        """
        merged = ScopeOptions()
        if include_default and self.default_scope is not None:
            merged = merge_options(merged, self._normalize(self.default_scope, request, []))

        for scope_request in scope_requests:
            name, args = self._parse_request(scope_request)
            if name not in self.scopes:
                raise ScopeNotFoundError(name, self.model.name)
            logger.debug(f"Applying scope {self.model.name}.{name} args={args}")
            merged = merge_options(merged, self._normalize(self.scopes[name], request, args))
        return merged

    def has_scope(self, name: str) -> bool:
        return name in self.scopes

    def get_scope_names(self) -> list[str]:
        return list(self.scopes)
