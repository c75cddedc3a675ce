"""Models, records and their collaborators."""

from activeorm.models.indexes import IndexDefinition, IndexManager
from activeorm.models.lookup import LookupIds
from activeorm.models.model import Model, infer_table
from activeorm.models.record import Record

__all__ = [
    "IndexDefinition",
    "IndexManager",
    "LookupIds",
    "Model",
    "Record",
    "infer_table",
]
