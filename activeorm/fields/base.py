"""
Base field class.

A Field moves one attribute between its storage representation and a
record's in-memory state, and hosts the per-field lifecycle hooks. Field
classes are looked up by type name through FIELD_TYPES.
"""

from typing import Any, Callable, Optional, TYPE_CHECKING

import pydantic
from pydantic import TypeAdapter

from activeorm.exceptions import SchemaError, ValidationError
from activeorm.fields.definition import FieldDefinition

if TYPE_CHECKING:
    from activeorm.models.model import Model
    from activeorm.models.record import Record


class _Unset:
    """Sentinel meaning "leave this column out of the write payload"."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

FIELD_TYPES: dict[str, type["Field"]] = {}


def register_field_type(*names: str) -> Callable[[type["Field"]], type["Field"]]:
    """
    Class decorator registering a Field subclass under one or more type names.

    Example:
        >>> @register_field_type("string")
        ... class StringField(Field):
        ...     python_type = str
    """
    def decorator(cls: type["Field"]) -> type["Field"]:
        for name in names:
            FIELD_TYPES[name] = cls
        cls.type_name = names[0]
        return cls
    return decorator


class Field:
    """
    One attribute of a model.

    Subclasses set ``python_type`` to get pydantic coercion for free, and
    override the conversion or hook methods they need.
    """

    type_name: str = "field"
    python_type: Any = None
    stored: bool = True

    def __init__(self, model: "Model", name: str, definition: FieldDefinition):
        self.model = model
        self.name = name
        self.definition = definition
        self.column = definition.column or name
        if definition.stored is not None:
            self.stored = definition.stored
        self.required = definition.required
        self.unique = definition.unique
        self.index = definition.index
        self.description = definition.description
        self.is_discriminator = definition.is_discriminator
        self._adapter: Optional[TypeAdapter] = (
            TypeAdapter(Optional[self.python_type]) if self.python_type is not None else None
        )

    @classmethod
    def define(cls, model: "Model", name: str, definition: Any) -> "Field":
        """
        Build the Field for a declaration.

        Args:
            model: Owning model
            name: Field name
            definition: Type string, dict, FieldDefinition or Field

        Returns:
            Field instance bound to ``model``

        Raises:
            SchemaError: If the type name is unknown
        """
        if isinstance(definition, Field):
            definition = definition.definition
        definition = FieldDefinition.parse(definition)
        field_cls = FIELD_TYPES.get(definition.type)
        if field_cls is None:
            raise SchemaError(
                f"Unknown field type '{definition.type}' for {model.name}.{name}"
            )
        return field_cls(model, name, definition)

    @property
    def type(self) -> str:
        return self.type_name

    @property
    def has_default(self) -> bool:
        return self.definition.has_default

    def default_value(self) -> Any:
        default = self.definition.default
        return default() if callable(default) else default

    # -- value access -----------------------------------------------------

    def has_value(self, record: "Record") -> bool:
        return self.column in record._changes or self.column in record._data

    def raw(self, record: "Record") -> Any:
        """The stored form of the current value (pending change first)."""
        if self.column in record._changes:
            return record._changes[self.column]
        return record._data.get(self.column)

    def read(self, record: "Record") -> Any:
        return self.raw(record)

    def write(self, record: "Record", value: Any) -> None:
        """Assign a value, tracking it as a pending change if it differs."""
        value = self.deserialize(record, value)
        if self.column in record._data and record._data[self.column] == value:
            record._changes.pop(self.column, None)
        else:
            record._changes[self.column] = value
        record._is_dirty = bool(record._changes)

    def descriptor(self) -> property:
        """Property wiring attribute access on records to read/write."""
        field = self

        def fget(record):
            return field.read(record)

        def fset(record, value):
            field.write(record, value)

        return property(fget, fset, doc=self.description or None)

    # -- conversion -------------------------------------------------------

    def deserialize(self, record: "Record", value: Any) -> Any:
        """Convert a stored value to its in-memory form; lenient on bad input."""
        if value is None or self._adapter is None:
            return value
        try:
            return self._adapter.validate_python(value)
        except pydantic.ValidationError:
            return value

    def serialize(self, record: "Record") -> Any:
        """Return the storage value, or UNSET to leave the column out."""
        if not self.has_value(record):
            return UNSET
        return self.raw(record)

    def to_json(self, record: "Record") -> Any:
        if not self.has_value(record):
            return UNSET
        return self.raw(record)

    def validate(self, record: "Record") -> None:
        """
        Check constraints on the record's current value.

        Raises:
            ValidationError: If a required value is missing or the value
                cannot be coerced to the field's type
        """
        value = self.raw(record)
        if value is None:
            if self.required:
                raise ValidationError(
                    f"Field {self.name} is required on model {self.model.name}",
                    model_name=self.model.name,
                    field_name=self.name,
                )
            return
        if self._adapter is not None:
            try:
                self._adapter.validate_python(value)
            except pydantic.ValidationError as e:
                raise ValidationError(
                    f"Invalid value for field {self.name} on model {self.model.name}: "
                    f"{e.errors()[0]['msg']}",
                    model_name=self.model.name,
                    field_name=self.name,
                ) from e

    # -- hooks ------------------------------------------------------------

    def post_attach(self) -> None:
        """Called once when the owning model finishes initializing."""
        pass

    async def pre_create(self, record: "Record") -> "Record":
        return record

    async def post_create(self, record: "Record") -> "Record":
        return record

    async def pre_update(self, record: "Record") -> "Record":
        return record

    async def post_update(self, record: "Record") -> "Record":
        return record

    async def pre_unlink(self, record: "Record") -> "Record":
        return record

    async def post_unlink(self, record: "Record") -> "Record":
        return record

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.model.name}.{self.name}>"
