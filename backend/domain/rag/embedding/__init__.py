"""
Query embedding provider
"""

from domain.rag.embedding.client import OpenAIEmbeddingClient
from domain.rag.embedding.types import EmbeddingResult

__all__ = [
    "OpenAIEmbeddingClient",
    "EmbeddingResult",
]
