"""Scalar field types."""

import json
from datetime import date, datetime
from typing import Any, Union

from activeorm.fields.base import UNSET, Field, register_field_type


@register_field_type("primary")
class PrimaryField(Field):
    """Primary key. Values are kept as given; the backend generates them on insert."""

    def validate(self, record) -> None:
        pass


@register_field_type("string")
class StringField(Field):
    python_type = str


@register_field_type("text")
class TextField(Field):
    python_type = str


@register_field_type("number")
class NumberField(Field):
    python_type = Union[int, float]


@register_field_type("integer")
class IntegerField(Field):
    python_type = int


@register_field_type("float")
class FloatField(Field):
    python_type = float


@register_field_type("boolean")
class BooleanField(Field):
    python_type = bool


@register_field_type("datetime")
class DateTimeField(Field):
    python_type = datetime


@register_field_type("date")
class DateField(Field):
    python_type = date


@register_field_type("json")
class JsonField(Field):
    """Arbitrary JSON document, stored as text."""

    def deserialize(self, record, value: Any) -> Any:
        if isinstance(value, (str, bytes)):
            try:
                return json.loads(value)
            except ValueError:
                return value
        return value

    def serialize(self, record) -> Any:
        if not self.has_value(record):
            return UNSET
        value = self.raw(record)
        return None if value is None else json.dumps(value, default=str)
