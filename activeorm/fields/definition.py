"""
Field declarations.

Models declare fields either as a shorthand type string or as a dict:

    fields = {
        "id": "primary",
        "email": {"type": "string", "required": True, "unique": True},
        "author_id": {"type": "many-to-one", "model": "User"},
    }

Both forms are normalized into a FieldDefinition.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field as PydanticField


class FieldDefinition(BaseModel):
    """
    Normalized field declaration.

    Whether a default was declared is tracked through ``model_fields_set``,
    so ``{"default": None}`` is a real default while an omitted key is not.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str
    column: Optional[str] = None
    stored: Optional[bool] = None
    required: bool = False
    unique: bool = False
    index: bool = False
    default: Any = None
    description: str = ""
    is_discriminator: bool = PydanticField(default=False, alias="isDiscriminator")

    # relations
    model: Optional[str] = None
    foreign: Optional[str] = None
    models: list[str] = PydanticField(default_factory=list)
    join_table: Optional[str] = PydanticField(default=None, alias="joinTable")

    @property
    def has_default(self) -> bool:
        return "default" in self.model_fields_set

    @classmethod
    def parse(cls, definition: Any) -> "FieldDefinition":
        """
        Normalize a declaration.

        Args:
            definition: Type string, dict, or FieldDefinition

        Returns:
            FieldDefinition instance

        Example:
            >>> FieldDefinition.parse("string").type
            'string'
        """
        if isinstance(definition, cls):
            return definition
        if isinstance(definition, str):
            return cls(type=definition)
        if isinstance(definition, dict):
            return cls.model_validate(definition)
        raise TypeError(f"Invalid field definition: {definition!r}")
