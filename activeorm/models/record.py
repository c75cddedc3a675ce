"""
Active record instances.

A Record is one live row. Committed values sit in ``_data`` and pending
assignments in ``_changes``, both keyed by column. Records of inherited
models own a ``_parent`` record that shares their primary key; parent-only
fields are reached through forwarding properties generated by the Model.
"""

import asyncio
import logging
from typing import Any, Optional, TYPE_CHECKING

from activeorm.exceptions import SchemaError, UnknownFieldError
from activeorm.fields.base import UNSET

if TYPE_CHECKING:
    from activeorm.fields.base import Field
    from activeorm.models.model import Model

logger = logging.getLogger(__name__)


class Record:
    """
    Base class of every generated record class.

    Subclasses are built by ``Model._init`` with one property per field and
    the model's behavior classes as extra bases, so lifecycle hooks can be
    overridden by plain method definitions:

    Example:
        >>> class Users:
        ...     fields = {"email": "string"}
        ...
        ...     async def pre_create(self):
        ...         self.email = self.email.lower()
        ...         return await super().pre_create()
    """

    # set on each generated class; survives unlink() unlike ``_model``
    _schema: "Model"

    def __init__(self, model: "Model", data: Optional[dict[str, Any]] = None, parent: Optional["Record"] = None):
        self._model: Optional["Model"] = model
        self._data: dict[str, Any] = {}
        self._changes: dict[str, Any] = {}
        self._parent = parent
        self._relations: dict[str, Any] = {}
        self._flushed = False
        self._is_dirty = False
        self._is_ready = False
        self._hydration: Optional[asyncio.Future] = None

        self.sync(data or {})
        if self._pk is None:
            self._is_ready = True
            self._apply_defaults()
        elif not model._hydratable:
            self._is_ready = True

    @property
    def _pk(self) -> Any:
        return self._schema.primary_field.raw(self)

    def _apply_defaults(self) -> None:
        for field in self._schema.fields.values():
            if field.has_default and not field.has_value(self):
                self._data[field.column] = field.deserialize(self, field.default_value())

    # -- state ------------------------------------------------------------

    def sync(self, data: dict[str, Any]) -> "Record":
        """
        Merge authoritative data into the record.

        Fresh values overwrite pending local changes for the same column.
        The primary key is never replaced once set.
        """
        if self._parent is not None:
            self._parent.sync(data)

        model = self._schema
        primary = model.primary_field
        touched = False
        for field in model.fields.values():
            if not field.stored:
                continue
            if field.name in data:
                key = field.name
            elif field.column in data:
                key = field.column
            else:
                continue
            if field is primary and self._data.get(field.column) is not None:
                continue
            self._data[field.column] = field.deserialize(self, data[key])
            self._changes.pop(field.column, None)
            if field is not primary and not field.is_discriminator:
                touched = True

        if touched:
            self._is_ready = True
        self._is_dirty = bool(self._changes)
        return self

    def is_changed(self, name: str) -> bool:
        """
        Whether a field has a pending change.

        A record without a primary key is new and every field counts as
        changed.
        """
        if self._pk is None:
            return True
        if name in self._schema.fields:
            return self._schema.fields[name].column in self._changes
        if self._parent is not None and self._parent._knows(name):
            return self._parent.is_changed(name)
        return self.get_field(name).column in self._changes

    def _knows(self, name: str) -> bool:
        if name in self._schema.fields:
            return True
        return self._parent is not None and self._parent._knows(name)

    async def ready(self) -> "Record":
        """Wait for deferred hydration (parent first) and return the record."""
        if self._parent is not None:
            await self._parent.ready()
        if self._is_ready:
            return self
        if self._hydration is None:
            self._hydration = asyncio.ensure_future(self._hydrate())
        try:
            await self._hydration
        except Exception:
            self._hydration = None
            raise
        return self

    async def _hydrate(self) -> None:
        model = self._schema
        pk = self._pk
        rows = await model._lookup.lookup([pk])
        row = rows[0]
        if row is None:
            # stale reference: resolve to a key-less record instead of failing
            logger.warning(f"{model.name}:{pk} not found, clearing its key")
            self._data.pop(model.primary_field.column, None)
            model._unregister(self, pk)
        else:
            self.sync(row)
        self._is_ready = True

    # -- persistence ------------------------------------------------------

    async def flush(self) -> "Record":
        """
        Write pending changes.

        No-op unless the record is dirty. The parent is flushed first. On a
        validation or storage failure the pending changes stay in place so
        the flush can be retried.
        """
        if self._parent is not None:
            await self._parent.flush()
        if not self._is_dirty:
            return self

        model = self._schema
        await self.pre_update()
        await self.pre_validate()
        await asyncio.gather(*(field.pre_update(self) for field in model.fields.values()))

        update = {}
        for field in model.fields.values():
            if not field.stored or field.column not in self._changes:
                continue
            field.validate(self)
            value = field.serialize(self)
            if value is not UNSET:
                update[field.column] = value

        pk = self._pk
        if update:
            logger.debug(f"Updating {model.name}:{pk} columns={sorted(update)}")
            await model.unscoped().where({model.primary_field.name: pk}).update(update)

        self._data.update(self._changes)
        self._changes = {}
        self._is_dirty = False

        if model.cache is not None and not model.repo.transactional:
            model.cache.set(model.cache_key(pk), self.to_raw_json(), model.cache_ttl)
        else:
            self._flushed = True

        updated = [field for field in model.fields.values() if field.column in update]
        await asyncio.gather(*(field.post_update(self) for field in updated))
        await self.post_update()
        model.emit("update", self)
        if model.cache_invalidation:
            model.invalidate_cache()
        return self

    async def unlink(self) -> "Record":
        """
        Delete the record, then its parent.

        The record is detached from its model before any hook runs.
        """
        model = self._model
        if model is None:
            return self
        self._model = None

        await self.pre_unlink()
        await self.pre_validate()
        await asyncio.gather(*(field.pre_unlink(self) for field in model.fields.values()))

        pk = self._pk
        logger.debug(f"Deleting {model.name}:{pk}")
        await model.unscoped().where({model.primary_field.name: pk}).delete()
        if self._parent is not None:
            await self._parent.unlink()

        await asyncio.gather(*(field.post_unlink(self) for field in model.fields.values()))
        await self.post_unlink()
        model.emit("unlink", self)

        if model.cache is not None:
            model.cache.expire(model.cache_key(pk))
        if model.cache_invalidation:
            model.invalidate_cache()
        model._unregister(self, pk)
        return self

    async def write(self, data: Optional[dict[str, Any]] = None) -> "Record":
        """
        Assign several fields, then flush.

        Keys the record does not declare are handed to the parent record.

        Raises:
            UnknownFieldError: If a key is declared by neither the record nor
                any of its parents
        """
        data = dict(data or {})
        unknown = [key for key in data if not self._knows(key)]
        if unknown:
            raise UnknownFieldError(self._schema.name, unknown)

        remainder = {}
        for key, value in data.items():
            if key in self._schema.fields:
                setattr(self, key, value)
            else:
                remainder[key] = value
        if remainder:
            await self._parent.write(remainder)
        return await self.flush()

    # -- serialization ----------------------------------------------------

    def to_json(self) -> dict[str, Any]:
        """Snapshot including the parent chain's fields."""
        result = self._parent.to_json() if self._parent is not None else {}
        result.update(self.to_raw_json())
        return result

    def to_raw_json(self) -> dict[str, Any]:
        """Snapshot of this record's own fields only."""
        result = {}
        for name, field in self._schema.fields.items():
            value = field.to_json(self)
            if value is not UNSET:
                result[name] = value
        return result

    # -- helpers ----------------------------------------------------------

    def get_model(self, name: str) -> "Model":
        return self._schema.repo.get(name)

    def get_field(self, name: str) -> "Field":
        fields = self._schema.fields
        if name not in fields:
            raise SchemaError(f"Field {name} does not exist on model {self._schema.name}")
        return fields[name]

    def get_context(self, key: str, default: Any = None) -> Any:
        return self._schema.repo.get_context(key, default)

    def set_context(self, key: str, value: Any) -> "Record":
        self._schema.repo.set_context(key, value)
        return self

    # -- hooks ------------------------------------------------------------

    async def pre_validate(self) -> "Record":
        return self

    async def pre_create(self) -> "Record":
        return self

    async def post_create(self) -> "Record":
        return self

    async def pre_update(self) -> "Record":
        return self

    async def post_update(self) -> "Record":
        return self

    async def pre_unlink(self) -> "Record":
        return self

    async def post_unlink(self) -> "Record":
        return self

    def __repr__(self) -> str:
        return f"<{self._schema.name} {self._pk}>"
