"""Field types for activeorm models."""

from activeorm.fields.base import FIELD_TYPES, UNSET, Field, register_field_type
from activeorm.fields.definition import FieldDefinition
from activeorm.fields.scalars import (
    BooleanField,
    DateField,
    DateTimeField,
    FloatField,
    IntegerField,
    JsonField,
    NumberField,
    PrimaryField,
    StringField,
    TextField,
)
from activeorm.fields.relations import (
    CollectionProxy,
    ManyToManyField,
    ManyToOneField,
    OneToManyField,
    ReferenceField,
)

__all__ = [
    "FIELD_TYPES",
    "UNSET",
    "Field",
    "FieldDefinition",
    "register_field_type",
    "PrimaryField",
    "StringField",
    "TextField",
    "NumberField",
    "IntegerField",
    "FloatField",
    "BooleanField",
    "DateTimeField",
    "DateField",
    "JsonField",
    "ReferenceField",
    "ManyToOneField",
    "OneToManyField",
    "ManyToManyField",
    "CollectionProxy",
]
