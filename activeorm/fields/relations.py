"""
Reference and relation fields.

``reference`` stores a model name (the inheritance discriminator is one).
``many-to-one`` stores a foreign id and reads back as the related record.
``one-to-many`` and ``many-to-many`` are not stored on the owning table;
reading them returns a CollectionProxy that loads lazily.
"""

import logging
from typing import Any, Optional, TYPE_CHECKING

from activeorm.exceptions import SchemaError, ValidationError
from activeorm.fields.base import UNSET, Field, register_field_type

if TYPE_CHECKING:
    from activeorm.models.model import Model
    from activeorm.models.record import Record

logger = logging.getLogger(__name__)


def _is_record(value: Any) -> bool:
    from activeorm.models.record import Record
    return isinstance(value, Record)


@register_field_type("reference")
class ReferenceField(Field):
    """
    Model-name column.

    ``models`` lists the allowed names; for a discriminator it grows as
    child models initialize.
    """

    python_type = str

    @property
    def models(self) -> list[str]:
        return self.definition.models

    def validate(self, record: "Record") -> None:
        super().validate(record)
        value = self.raw(record)
        # a discriminator may also name its own model (plain parent rows)
        if self.is_discriminator and value == self.model.name:
            return
        if value is not None and self.models and value not in self.models:
            raise ValidationError(
                f"Invalid value {value!r} for field {self.name} on model "
                f"{self.model.name}, expected one of: {', '.join(self.models)}",
                model_name=self.model.name,
                field_name=self.name,
            )


@register_field_type("many-to-one")
class ManyToOneField(Field):
    """
    Foreign key to another model.

    Example:
        >>> fields = {"author_id": {"type": "many-to-one", "model": "User"}}
        >>> await post.author_id.ready()   # related User record
    """

    def post_attach(self) -> None:
        if not self.definition.model:
            raise SchemaError(
                f"Field {self.name} on model {self.model.name} needs a target model"
            )

    @property
    def target(self) -> "Model":
        return self.model.repo.get(self.definition.model)

    def deserialize(self, record: "Record", value: Any) -> Any:
        if _is_record(value):
            return value._pk
        return value

    def read(self, record: "Record") -> Any:
        value = self.raw(record)
        if value is None:
            return None
        target = self.target
        resident = target.entities.get(value)
        if resident is not None:
            return resident
        return target.allocate({target.primary_field.name: value})


class CollectionProxy:
    """
    Lazy collection of related records.

    Example:
        >>> books = await author.books.load()
        >>> await author.books.add(book)
    """

    def __init__(self, field: "Field", record: "Record"):
        self.field = field
        self.record = record
        self._items: Optional[list["Record"]] = None

    @property
    def loaded(self) -> bool:
        return self._items is not None

    async def load(self, refresh: bool = False) -> list["Record"]:
        """Fetch the related records once and memoize them."""
        if self._items is None or refresh:
            self._items = list(await self.field.fetch(self.record))
        return self._items

    async def add(self, item: Any) -> "Record":
        related = await self.field.link(self.record, item)
        if self._items is not None and related not in self._items:
            self._items.append(related)
        return related

    async def remove(self, item: Any) -> None:
        related = await self.field.unlink_item(self.record, item)
        if self._items is not None and related in self._items:
            self._items.remove(related)

    def ids(self) -> list[Any]:
        return [item._pk for item in self._items or []]

    def __iter__(self):
        return iter(self._items or [])

    def __len__(self) -> int:
        return len(self._items or [])

    def __repr__(self) -> str:
        state = f"{len(self._items)} loaded" if self._items is not None else "not loaded"
        return f"<CollectionProxy {self.field.model.name}.{self.field.name} ({state})>"


class _CollectionField(Field):
    stored = False

    def read(self, record: "Record") -> CollectionProxy:
        proxy = record._relations.get(self.name)
        if proxy is None:
            proxy = CollectionProxy(self, record)
            record._relations[self.name] = proxy
        return proxy

    def write(self, record: "Record", value: Any) -> None:
        raise SchemaError(
            f"Field {self.name} on model {self.model.name} is a collection; "
            f"use add() / remove()"
        )

    def serialize(self, record: "Record") -> Any:
        return UNSET

    def to_json(self, record: "Record") -> Any:
        proxy = record._relations.get(self.name)
        if proxy is None or not proxy.loaded:
            return UNSET
        return proxy.ids()

    def validate(self, record: "Record") -> None:
        pass

    async def _resolve(self, target: "Model", item: Any) -> "Record":
        if _is_record(item):
            return item
        related = await target.find_by_id(item)
        if related is None:
            raise ValidationError(
                f"{target.name} {item!r} not found for field {self.name} "
                f"on model {self.model.name}",
                model_name=self.model.name,
                field_name=self.name,
            )
        return related


@register_field_type("one-to-many")
class OneToManyField(_CollectionField):
    """
    Inverse side of a many-to-one, declared as ``foreign='Model.field'``.
    """

    def post_attach(self) -> None:
        foreign = self.definition.foreign or ""
        if "." not in foreign:
            raise SchemaError(
                f"Field {self.name} on model {self.model.name} needs "
                f"foreign='Model.field', got {foreign!r}"
            )
        self.target_name, self.foreign_key = foreign.split(".", 1)

    @property
    def target(self) -> "Model":
        return self.model.repo.get(self.target_name)

    async def fetch(self, record: "Record") -> list["Record"]:
        if record._pk is None:
            return []
        return await self.target.where({self.foreign_key: record._pk})

    async def link(self, record: "Record", item: Any) -> "Record":
        related = await self._resolve(self.target, item)
        setattr(related, self.foreign_key, record._pk)
        await related.flush()
        return related

    async def unlink_item(self, record: "Record", item: Any) -> "Record":
        related = await self._resolve(self.target, item)
        setattr(related, self.foreign_key, None)
        await related.flush()
        return related


@register_field_type("many-to-many")
class ManyToManyField(_CollectionField):
    """
    Pairs kept in a join table, ``<table_a>_<table_b>`` by default.

    Example:
        >>> fields = {"tags": {"type": "many-to-many", "model": "Tag"}}
        >>> await post.tags.add(tag)
    """

    def post_attach(self) -> None:
        if not self.definition.model:
            raise SchemaError(
                f"Field {self.name} on model {self.model.name} needs a target model"
            )

    @property
    def target(self) -> "Model":
        return self.model.repo.get(self.definition.model)

    @property
    def join_table(self) -> str:
        if self.definition.join_table:
            return self.definition.join_table
        return "_".join(sorted([self.model.table, self.target.table]))

    @property
    def join_columns(self) -> tuple[str, str]:
        left = f"{self.model.table}_id"
        right = f"{self.target.table}_id"
        if left == right:
            right = f"related_{right}"
        return left, right

    def _query(self):
        return self.model.repo.query_builder(self.join_table)

    async def fetch(self, record: "Record") -> list["Record"]:
        if record._pk is None:
            return []
        left, right = self.join_columns
        rows = await self._query().where({left: record._pk}).select(right)
        ids = [row[right] for row in rows]
        if not ids:
            return []
        return await self.target.lookup(ids)

    async def link(self, record: "Record", item: Any) -> "Record":
        related = await self._resolve(self.target, item)
        left, right = self.join_columns
        existing = await self._query().where({left: record._pk, right: related._pk}).first()
        if existing is None:
            await self._query().insert({left: record._pk, right: related._pk})
            logger.debug(f"Linked {self.model.name}:{record._pk} to {self.target.name}:{related._pk}")
        return related

    async def unlink_item(self, record: "Record", item: Any) -> "Record":
        related = await self._resolve(self.target, item)
        left, right = self.join_columns
        await self._query().where({left: record._pk, right: related._pk}).delete()
        return related

    async def post_unlink(self, record: "Record") -> "Record":
        left, _ = self.join_columns
        if record._pk is not None:
            await self._query().where({left: record._pk}).delete()
        return record
