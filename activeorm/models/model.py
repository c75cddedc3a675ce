"""
Model: runtime schema of one entity.

A Model collects every definition class registered under its name (the
initial one plus extensions), folds them with its mixins and its parent
model into one generated record class, and allocates, creates and queries
records of that class.

Definition classes are plain classes read through their own attributes:

    class Users:
        fields = {"email": {"type": "string", "required": True}}
        indexes = [{"fields": ["email"], "unique": True}]
        cache = True                 # or a TTL in seconds
        cache_invalidation = False
        inherits = None              # parent model name
        inherit_field = None         # discriminator name on the parent
        mixins = ["Timestampable"]
        abstract = False
        scopes = {"active": {"where": {"active": True}}}
        default_scope = None

Any other method defined on them becomes record behavior.
"""

import asyncio
import logging
import re
import time
from collections import defaultdict
from typing import Any, Callable, Optional, TYPE_CHECKING

from activeorm.backends.base import ReturningNotSupportedError
from activeorm.exceptions import (
    AbstractModelError,
    DiscriminatorError,
    NoScopesError,
    RegistrationError,
    SchemaError,
)
from activeorm.fields.base import UNSET, Field
from activeorm.fields.definition import FieldDefinition
from activeorm.models.indexes import IndexDefinition, IndexManager
from activeorm.models.lookup import LookupIds
from activeorm.models.record import Record
from activeorm.query.request import Request
from activeorm.query.scopes import ScopeBuilder

if TYPE_CHECKING:
    from activeorm.cache.base import CacheAdapter
    from activeorm.repository import Repository

logger = logging.getLogger(__name__)

INVALIDATION_TTL = 31_536_000


def infer_table(name: str) -> str:
    """``BlogPost`` -> ``blog_post``."""
    return re.sub(r"([a-z])([A-Z])", r"\1_\2", name).lower()


def _delegate(name: str) -> property:
    def fget(record):
        return getattr(record._parent, name)

    def fset(record, value):
        setattr(record._parent, name, value)

    return property(fget, fset, doc=f"Forwarded to the parent record's {name}")


def _unique_bases(classes: list[type]) -> tuple[type, ...]:
    result: list[type] = []
    for cls in classes:
        if cls not in result:
            result.append(cls)
    # a class already reached through a subclass's MRO would break linearization
    return tuple(
        cls for cls in result
        if not any(other is not cls and issubclass(other, cls) for other in result)
    )


class Model:
    """
    Registry entry and schema for one entity.

    Attributes:
        name: Registry key
        table: Storage table (snake_case of the name unless declared)
        fields: Own fields by name, after initialization
        super: Parent model for class-table inheritance
        entities: Identity map, primary key -> live record
        cls_init: Whether the record class is built
    """

    def __init__(self, repo: "Repository", name: str, table: Optional[str] = None):
        self.repo = repo
        self.name = name
        self.table = table or infer_table(name)
        self.description = ""
        self.definitions: list[type] = []
        self._declared: dict[str, Any] = {}
        self.fields: dict[str, Field] = {}
        self.columns: list[str] = []
        self.mixins: dict[str, None] = {}
        self.inherits: Optional[str] = None
        self.inherit_field_name: Optional[str] = None
        self.inherit_field: Optional[Field] = None
        self.super: Optional["Model"] = None
        self.ref_field: Optional[Field] = None
        self.primary_field: Optional[Field] = None
        self.abstract = False
        self.cache_ttl = 0
        self.cache_invalidation = False
        self._cache_invalidate_ts = 0.0
        self.scope_builder: Optional[ScopeBuilder] = None
        self.index_manager = IndexManager(self)
        self.entities: dict[Any, Record] = {}
        self._lookup = LookupIds(self)
        self._listeners: dict[str, list[Callable]] = defaultdict(list)
        self._behaviors: list[type] = []
        self._hydratable: list[Field] = []
        self.cls: Optional[type] = None
        self.cls_init = False

    # -- registration -----------------------------------------------------

    def extends(self, definition: type) -> "Model":
        """
        Fold one definition class into the model.

        Extending an initialized model resets it: the record class is rebuilt
        on next use and the identity map is cleared.

        Raises:
            RegistrationError: If the definition inherits from a different
                parent than an earlier one
        """
        if self.cls_init:
            logger.debug(f"Re-initializing {self.name} after extension")
            self.cls_init = False
            self.entities.clear()

        attrs = vars(definition)
        inherits = attrs.get("inherits")
        if inherits:
            if self.inherits and self.inherits != inherits:
                raise RegistrationError(
                    f"Model {self.name} already inherits from {self.inherits}, "
                    f"cannot inherit from {inherits} as well"
                )
            self.inherits = inherits
        self.definitions.append(definition)

        for name, declaration in (attrs.get("fields") or {}).items():
            self._declared[name] = declaration
        if attrs.get("indexes"):
            self.index_manager.merge(attrs["indexes"])
        if attrs.get("table"):
            self.table = attrs["table"]
        if "cache" in attrs:
            cache = attrs["cache"]
            if cache is True:
                self.cache_ttl = self.repo.settings.default_cache_ttl
            else:
                self.cache_ttl = int(cache or 0)
        if attrs.get("description"):
            self.description = attrs["description"]
        if attrs.get("inherit_field"):
            self.inherit_field_name = attrs["inherit_field"]
        if "cache_invalidation" in attrs:
            self.cache_invalidation = bool(attrs["cache_invalidation"])
        if "abstract" in attrs:
            self.abstract = bool(attrs["abstract"])
        for mixin in attrs.get("mixins") or []:
            self.mixins[mixin] = None

        if "scopes" in attrs or "default_scope" in attrs:
            current = self.scope_builder
            scopes = dict(current.scopes) if current else {}
            scopes.update(attrs.get("scopes") or {})
            default = current.default_scope if current else None
            if "default_scope" in attrs:
                default = attrs["default_scope"]
            self.scope_builder = ScopeBuilder(self, scopes, default)
        return self

    # -- initialization ---------------------------------------------------

    def check_abstract(self) -> None:
        """
        Raises:
            AbstractModelError: If the model is flagged abstract
        """
        if self.abstract:
            raise AbstractModelError(self.name)

    def _init(self) -> None:
        """Build the record class. Memoized until the next extends()."""
        self.check_abstract()
        if self.cls_init:
            return

        parent: Optional[Model] = None
        if self.inherits:
            parent = self.repo.get(self.inherits)
            parent._init()
            # the parent initializes its registered children
            if self.cls_init:
                return
            self.super = parent
            self.inherit_field = parent._ensure_discriminator(self.inherit_field_name)
            if self.name not in self.inherit_field.models:
                self.inherit_field.models.append(self.name)
            for mixin in parent.mixins:
                self.mixins.setdefault(mixin, None)

        declared = dict(self._declared)
        mixin_models = []
        for mixin_name in self.mixins:
            mixin = self.repo.get(mixin_name)
            mixin_models.append(mixin)
            for name, declaration in mixin._declared.items():
                declared.setdefault(name, declaration)
            self._merge_scopes(mixin)

        self._build_fields(declared)

        namespace: dict[str, Any] = {"_schema": self, "__module__": __name__}
        for name, field in self.fields.items():
            namespace[name] = field.descriptor()
        if parent is not None:
            for name in parent.field_names():
                if name not in self.fields:
                    namespace[name] = _delegate(name)

        behaviors = list(reversed(self.definitions))
        if parent is not None:
            behaviors.extend(parent._behaviors)
        for mixin in mixin_models:
            behaviors.extend(reversed(mixin.definitions))
        bases = _unique_bases(behaviors)
        self._behaviors = list(bases)
        self.cls = type(self.name, bases + (Record,), namespace)

        self.index_manager.validate()
        for field in self.fields.values():
            field.post_attach()
        self.cls_init = True
        logger.debug(f"Initialized model {self.name} ({self.table}): {', '.join(self.fields)}")
        self.emit("init", self)

        for model in list(self.repo.models.values()):
            if model.inherits == self.name and not model.abstract and not model.cls_init:
                model._init()

    def _build_fields(self, declared: dict[str, Any]) -> None:
        fields: dict[str, Field] = {}
        self.primary_field = None
        self.ref_field = None
        for name, declaration in declared.items():
            field = Field.define(self, name, declaration)
            fields[name] = field
            if field.type == "primary" and self.primary_field is None:
                self.primary_field = field
            if field.type == "reference":
                if field.is_discriminator and self.ref_field is not None and self.ref_field.is_discriminator:
                    raise SchemaError(
                        f"Model {self.name} cannot have two discriminator fields: "
                        f"{self.ref_field.name} and {name}"
                    )
                if self.ref_field is None or field.is_discriminator:
                    self.ref_field = field
        if self.primary_field is None:
            self.primary_field = Field.define(self, "id", "primary")
            fields = {"id": self.primary_field, **fields}

        self.fields = fields
        self.columns = [f.column for f in fields.values() if f.stored]
        self._refresh_hydratable()

    def _refresh_hydratable(self) -> None:
        self._hydratable = [
            f for f in self.fields.values()
            if f.stored and f is not self.primary_field and not f.is_discriminator
        ]

    def _merge_scopes(self, mixin: "Model") -> None:
        source = mixin.scope_builder
        if source is None:
            return
        own = self.scope_builder
        scopes = dict(source.scopes)
        if own is not None:
            scopes.update(own.scopes)
        default = own.default_scope if own is not None else None
        if default is None:
            default = source.default_scope
        self.scope_builder = ScopeBuilder(self, scopes, default)

    def _ensure_discriminator(self, name: Optional[str] = None) -> Field:
        """
        Return the discriminator field of this (parent) model, adding it when
        missing.

        Raises:
            SchemaError: If another reference field already exists
        """
        if name is None:
            name = self.ref_field.name if self.ref_field is not None else "_inherit"
        field = self.fields.get(name)
        if field is None:
            if self.ref_field is not None:
                raise SchemaError(
                    f"Model {self.name} already has a reference field {self.ref_field.name}, "
                    f"cannot create inherit field {name}"
                )
            definition = FieldDefinition(type="reference", required=True, is_discriminator=True)
            field = Field.define(self, name, definition)
            self._declared[name] = definition
            self.fields[name] = field
            setattr(self.cls, name, field.descriptor())
            if field.stored and field.column not in self.columns:
                self.columns.append(field.column)
            field.post_attach()
            logger.debug(f"Added discriminator {self.name}.{name}")
        elif field.type != "reference":
            raise SchemaError(
                f"Field {name} on model {self.name} cannot be a discriminator, "
                f"it is a {field.type} field"
            )
        field.is_discriminator = True
        field.definition.is_discriminator = True
        self._declared[name] = field.definition
        self.ref_field = field
        self._refresh_hydratable()
        return field

    def field_names(self) -> list[str]:
        """Own field names followed by the ones reached through the parent."""
        names = list(self.fields)
        if self.super is not None:
            names.extend(n for n in self.super.field_names() if n not in self.fields)
        return names

    def resolve_column(self, name: str) -> str:
        field = self.fields.get(name)
        if field is None:
            return name
        return f"{self.table}.{field.column}"

    @property
    def discriminator(self) -> Optional[Field]:
        if self.ref_field is not None and self.ref_field.is_discriminator:
            return self.ref_field
        return None

    @property
    def indexes(self) -> list[IndexDefinition]:
        self._init()
        return self.index_manager.get_indexes()

    # -- allocation -------------------------------------------------------

    def _route(self, data: dict[str, Any]) -> Optional["Model"]:
        discriminator = self.discriminator
        if discriminator is not None:
            value = data.get(discriminator.name, data.get(discriminator.column))
            if not value:
                raise DiscriminatorError(
                    f"Cannot allocate model {self.name} without discriminator "
                    f"field {discriminator.name}"
                )
            if value == self.name:
                return None
            return self.repo.get(value)

        # no declared discriminator: look for a value naming a child model
        candidates = [data.get(name) for name in self.fields]
        candidates += [data.get("class"), data.get("_inherit")]
        for value in candidates:
            if isinstance(value, str) and value != self.name and self.repo.has(value):
                child = self.repo.get(value)
                if child.inherits == self.name:
                    logger.debug(f"Inferred {self.name} -> {value} from data")
                    return child
        return None

    def _register(self, record: Record) -> None:
        pk = record._pk
        model: Optional[Model] = self
        while model is not None:
            model.entities[pk] = record
            model = model.super

    def _unregister(self, record: Record, pk: Any) -> None:
        """Drop ``pk`` from this map and every ancestor map holding ``record`` or a child of it."""
        model: Optional[Model] = self
        while model is not None:
            held = model.entities.get(pk)
            while held is not None and held is not record:
                held = held._parent
            if held is not None:
                del model.entities[pk]
            model = model.super

    def own_record(self, record: Optional[Record]) -> Optional[Record]:
        """Walk a record's parent chain to the record belonging to this model."""
        while record is not None and record._schema is not self:
            record = record._parent
        return record

    def allocate(self, data: Any, ignore_discriminator: bool = False) -> Record:
        """
        Get the live record for some row data.

        Args:
            data: Row or partial data (fields by name or column), or a record
            ignore_discriminator: Skip routing to a child model

        Returns:
            The resident record for the primary key, synced with ``data``, or
            a new record. A record allocated from a bare key hydrates lazily
            on ``ready()``.

        Raises:
            DiscriminatorError: If the model has a discriminator and ``data``
                carries no value for it
        """
        if isinstance(data, Record) and data._schema is self:
            return data
        self.check_abstract()
        self._init()
        data = dict(data or {})

        if not ignore_discriminator:
            child = self._route(data)
            if child is not None:
                return child.allocate(data)

        primary = self.primary_field
        pk = data.get(primary.name, data.get(primary.column))
        if pk is not None:
            resident = self.own_record(self.entities.get(pk))
            if resident is not None:
                return resident.sync(data)

        parent = None
        if self.super is not None:
            parent = self.super.allocate({**data, self.inherit_field.name: self.name}, True)

        record = self.cls(self, data, parent)
        if record._pk is not None:
            self._register(record)
        return record

    async def create(self, data: Optional[dict[str, Any]] = None) -> Record:
        """
        Insert a new record.

        For inherited models the parent row is created first and its key is
        reused for the child row.

        Raises:
            ValidationError: If a field constraint fails
        """
        self.check_abstract()
        self._init()
        values = dict(data or {})
        primary = self.primary_field

        if self.discriminator is not None:
            values.setdefault(self.discriminator.name, self.name)
        if self.super is not None:
            parent = await self.super.create({**values, self.inherit_field.name: self.name})
            values[primary.name] = parent._pk

        record = self.allocate(values, True)
        record._apply_defaults()
        await record.pre_create()
        await record.pre_validate()
        await asyncio.gather(*(field.pre_create(record) for field in self.fields.values()))

        payload = {}
        for field in self.fields.values():
            if not field.stored:
                continue
            field.validate(record)
            value = field.serialize(record)
            if value is not UNSET:
                payload[field.column] = value

        if self.super is None:
            pk = await self._insert(payload)
            if record._pk is None:
                record._data[primary.column] = pk
        else:
            await self.repo.query_builder(self.table).insert(payload)
        logger.debug(f"Created {self.name}:{record._pk}")

        record._data.update(record._changes)
        record._changes = {}
        record._is_dirty = False
        record._is_ready = True
        self._register(record)

        if self.cache is not None and not self.repo.transactional:
            self.cache.set(self.cache_key(record._pk), record.to_raw_json(), self.cache_ttl)
        else:
            record._flushed = True

        await asyncio.gather(*(field.post_create(record) for field in self.fields.values()))
        await record.post_create()
        self.emit("create", record)
        if self.cache_invalidation:
            self.invalidate_cache()
        return record

    async def _insert(self, payload: dict[str, Any]) -> Any:
        column = self.primary_field.column
        try:
            rows = await self.repo.query_builder(self.table).insert(payload).returning(column)
            return rows[0][column]
        except ReturningNotSupportedError:
            logger.debug(f"RETURNING unsupported, reading back last {self.table}.{column}")
            await self.repo.query_builder(self.table).insert(payload)
            row = await self.repo.query_builder(self.table).order_by(column, "DESC").first(column)
            return row[column] if row else None

    # -- querying ---------------------------------------------------------

    def query(self) -> Request:
        """New request on this model's table, with the default scope enabled."""
        self._init()
        request = Request(self, self.repo.query_builder(self.table))
        if self.scope_builder is not None and self.scope_builder.default_scope is not None:
            request._apply_default_scope = True
        return request

    def scope(self, *scope_requests: Any) -> Request:
        """
        New request with named scopes attached.

        Raises:
            NoScopesError: Immediately, if the model declares no scopes
        """
        request = self.query()
        if self.scope_builder is None:
            raise NoScopesError(self.name)
        request._scope_requests.extend(scope_requests)
        return request

    def unscoped(self) -> Request:
        """New request that never applies the default scope."""
        self._init()
        request = Request(self, self.repo.query_builder(self.table))
        request._apply_default_scope = False
        return request

    def where(self, criteria: Any = None, **conditions: Any) -> Request:
        return self.query().where(criteria, **conditions)

    def first_where(self, criteria: Any) -> Request:
        self.check_abstract()
        return self.where(criteria).first()

    def find_one(self, criteria: Any) -> Request:
        return self.first_where(criteria)

    async def lookup(self, ids: Any) -> list[Record]:
        """
        Records for a list of ids: resident ready records first, then the
        fetched ones. Unknown ids are left out.
        """
        self._init()
        if not isinstance(ids, (list, tuple, set)):
            ids = [ids]
        result: list[Record] = []
        missing = []
        for pk in ids:
            record = self.entities.get(pk)
            if record is not None and record._is_ready:
                result.append(record)
            else:
                missing.append(pk)
        if missing:
            rows = await self._lookup.lookup(missing)
            fetched = [self.allocate(row) for row in rows if row is not None]
            await asyncio.gather(*(record.ready() for record in fetched))
            result.extend(fetched)
        return result

    async def find_by_id(self, pk: Any) -> Optional[Record]:
        self._init()
        record = self.entities.get(pk)
        if record is not None:
            await record.ready()
            return record if record._pk is not None else None
        if self.discriminator is not None:
            # read the row itself so the discriminator is there for routing
            return await self.query().where({f"{self.table}.{self.primary_field.column}": pk}).first()
        records = await self.lookup([pk])
        return records[0] if records else None

    async def find_by_pk(self, pk: Any) -> Optional[Record]:
        return await self.find_by_id(pk)

    async def flush(self) -> "Model":
        """Flush every dirty resident record."""
        for record in list(self.entities.values()):
            await record.flush()
        return self

    # -- cache ------------------------------------------------------------

    @property
    def cache(self) -> Optional["CacheAdapter"]:
        if self.cache_ttl and self.cache_ttl > 0:
            return self.repo.cache
        return None

    def cache_key(self, pk: Any) -> str:
        return f"{self.name}:{pk}"

    def _eviction_marker(self) -> Optional[float]:
        marker = self._cache_invalidate_ts
        cache = self.repo.cache
        if cache is not None:
            shared = cache.get(f"${self.name}")
            if shared and shared > marker:
                marker = shared
        return marker or None

    def invalidate_cache(self) -> None:
        """Make every cached entry of this model created until now a miss."""
        cache = self.repo.cache
        now = cache.now() if cache is not None else time.time()
        self._cache_invalidate_ts = now
        if cache is not None:
            cache.set(f"${self.name}", now, INVALIDATION_TTL)
        logger.debug(f"Invalidated cache for {self.name} at {now}")

    # -- events / context -------------------------------------------------

    def on(self, event: str, listener: Callable[[Any], Any]) -> Callable[[Any], Any]:
        """Register a listener for ``init``, ``create``, ``update`` or ``unlink``."""
        self._listeners[event].append(listener)
        return listener

    def emit(self, event: str, payload: Any) -> None:
        for listener in list(self._listeners.get(event, [])):
            listener(payload)

    def get_context(self, key: str, default: Any = None) -> Any:
        return self.repo.get_context(key, default)

    def set_context(self, key: str, value: Any) -> "Model":
        self.repo.set_context(key, value)
        return self

    def __repr__(self) -> str:
        return f"<Model {self.name} table={self.table}>"
