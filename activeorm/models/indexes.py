"""
Index declarations.

Indexes are declared on a model definition as a list or a name-keyed dict:

    indexes = [
        {"fields": ["last_name", "first_name"]},
        {"name": "users_email_unique", "fields": ["email"], "unique": True},
    ]

Fields flagged ``index`` or ``unique`` imply a single-column index. The
manager only normalizes and checks declarations; creating them is the job
of a schema tool.
"""

from typing import Any, Optional, TYPE_CHECKING

from pydantic import BaseModel, field_validator

from activeorm.exceptions import SchemaError

if TYPE_CHECKING:
    from activeorm.models.model import Model


class IndexDefinition(BaseModel):
    """One index over one or more fields."""

    name: Optional[str] = None
    fields: list[str]
    unique: bool = False

    @field_validator("fields", mode="before")
    @classmethod
    def _single_field(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("fields")
    @classmethod
    def _not_empty(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("an index needs at least one field")
        return value


class IndexManager:
    """Collects and validates a model's index definitions."""

    def __init__(self, model: "Model"):
        self.model = model
        self._declared: list[IndexDefinition] = []

    def merge(self, indexes: Any) -> None:
        """
        Add declarations from one model definition.

        Args:
            indexes: List of index dicts, or a dict of name -> index dict
        """
        if isinstance(indexes, dict):
            items = [{**value, "name": name} for name, value in indexes.items()]
        else:
            items = list(indexes or [])
        for item in items:
            index = item if isinstance(item, IndexDefinition) else IndexDefinition.model_validate(item)
            if index.name:
                self._declared = [i for i in self._declared if i.name != index.name]
            self._declared.append(index)

    def _name(self, index: IndexDefinition) -> str:
        if index.name:
            return index.name
        suffix = "unique" if index.unique else "idx"
        return f"{self.model.table}_{'_'.join(index.fields)}_{suffix}"

    def validate(self) -> None:
        """
        Check every declared index against the model's fields.

        Raises:
            SchemaError: If an index names an unknown field
        """
        known = set(self.model.fields)
        known.update(field.column for field in self.model.fields.values())
        for index in self._declared:
            missing = [f for f in index.fields if f not in known]
            if missing:
                raise SchemaError(
                    f"Index {self._name(index)} on model {self.model.name} "
                    f"references unknown field {', '.join(missing)}"
                )

    def get_indexes(self) -> list[IndexDefinition]:
        """Declared indexes plus the ones implied by field flags, named."""
        result: dict[str, IndexDefinition] = {}
        for index in self._declared:
            name = self._name(index)
            result[name] = index.model_copy(update={"name": name})
        for field in self.model.fields.values():
            if not field.stored or not (field.index or field.unique):
                continue
            implied = IndexDefinition(fields=[field.column], unique=field.unique)
            name = self._name(implied)
            result.setdefault(name, implied.model_copy(update={"name": name}))
        return list(result.values())
