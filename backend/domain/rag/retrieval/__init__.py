"""
Search provider
"""

from domain.rag.retrieval.ann_retriever import ANNRetriever
from domain.rag.retrieval.types import RetrievalResult

__all__ = [
    "ANNRetriever",
    "RetrievalResult",
]
