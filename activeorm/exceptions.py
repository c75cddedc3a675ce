"""
Exception taxonomy for activeorm.

Errors carry a human-readable message naming the offending model, field or
scope. Storage errors raised by query builders live in
``activeorm.backends.base``.
"""


class OrmError(Exception):
    """Base exception for all activeorm errors."""
    pass


class RegistrationError(OrmError):
    """A model definition cannot be registered or resolved."""
    pass


class SchemaError(OrmError):
    """A model schema is inconsistent (unknown field, second discriminator, ...)."""
    pass


class UnknownFieldError(SchemaError):
    """write() received keys that neither the record nor its parents declare."""

    def __init__(self, model_name: str, fields: list[str]):
        self.model_name = model_name
        self.fields = list(fields)
        super().__init__(
            f"Field {', '.join(self.fields)} does not exist on model {model_name}"
        )


class DiscriminatorError(SchemaError):
    """Polymorphic allocation could not resolve the concrete child model."""
    pass


class AbstractModelError(OrmError):
    """An operation was attempted on a model flagged abstract."""

    def __init__(self, model_name: str):
        self.model_name = model_name
        super().__init__(f"Cannot instantiate abstract model {model_name}")


class ScopeError(OrmError):
    """Base class for scope resolution errors."""
    pass


class ScopeNotFoundError(ScopeError):
    """A scope name was requested that the model does not define."""

    def __init__(self, scope_name: str, model_name: str):
        self.scope_name = scope_name
        self.model_name = model_name
        super().__init__(f"Scope '{scope_name}' not defined on model '{model_name}'")


class NoScopesError(ScopeError):
    """scope() was called on a model that declares no scopes at all."""

    def __init__(self, model_name: str):
        self.model_name = model_name
        super().__init__(f"Model '{model_name}' has no scopes defined")


class ValidationError(OrmError):
    """A field constraint was violated at flush/create time."""

    def __init__(self, message: str, model_name: str = "", field_name: str = ""):
        self.model_name = model_name
        self.field_name = field_name
        super().__init__(message)
