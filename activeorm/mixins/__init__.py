"""
Built-in mixins.

Register them like any model, then list them in ``mixins``:

    repo.register(Timestampable)
    repo.register(SoftDeletable)
"""

from activeorm.mixins.soft_delete import SoftDeletable
from activeorm.mixins.timestamp import Timestampable

__all__ = [
    "SoftDeletable",
    "Timestampable",
]
