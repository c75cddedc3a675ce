"""
Timestampable mixin for automatic created_at and updated_at tracking.
"""

from datetime import datetime


class Timestampable:
    """
    Mixin that adds automatic timestamp tracking.

    - created_at: Set once when the record is created
    - updated_at: Set on creation and on every flush that writes changes

    Example:
        >>> repo.register(Timestampable)
        >>> class Users:
        ...     mixins = ["Timestampable"]
        ...     fields = {"name": "string"}
        >>> repo.register(Users)
        >>> user = await repo.Users.create({"name": "Alice"})
        >>> user.created_at == user.updated_at
        True
    """

    abstract = True
    fields = {
        "created_at": "datetime",
        "updated_at": "datetime",
    }

    async def pre_create(self):
        now = datetime.now()
        if self.created_at is None:
            self.created_at = now
        self.updated_at = now
        return await super().pre_create()

    async def pre_update(self):
        self.updated_at = datetime.now()
        return await super().pre_update()
