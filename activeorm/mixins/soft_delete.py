"""
SoftDeletable mixin: unlink() marks records deleted instead of removing them.
"""

from datetime import datetime

from activeorm.exceptions import OrmError


class SoftDeletable:
    """
    Mixin that turns deletes into a ``deleted_at`` timestamp.

    Its default scope hides deleted rows from ``query()``, ``where()`` and
    ``scope()``; use ``unscoped()`` to see them.

    Example:
        >>> await doc.unlink()
        >>> doc.is_deleted
        True
        >>> await repo.Documents.unscoped().where({"id": doc.id})
        [<Documents 1>]
        >>> await doc.restore()
    """

    abstract = True
    fields = {
        "deleted_at": {"type": "datetime", "default": None},
    }
    default_scope = {"where": {"deleted_at": None}}

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    async def unlink(self):
        if self.deleted_at is None:
            await self.write({"deleted_at": datetime.now()})
        return self

    async def force_unlink(self):
        """Delete the row for real."""
        return await super().unlink()

    async def restore(self):
        if self.deleted_at is None:
            raise OrmError(f"{self._schema.name}:{self._pk} is not deleted")
        return await self.write({"deleted_at": None})
