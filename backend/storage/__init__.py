"""
Persistent store and search backend
"""

from storage.base import BaseSingleVectorStore, BaseOptimizerStore
from storage.optimizer_sql_store import OptimizerSQLStore
from storage.single_vector_store import SingleVectorStore

__all__ = [
    "BaseSingleVectorStore",
    "BaseOptimizerStore",
    "OptimizerSQLStore",
    "SingleVectorStore",
]
