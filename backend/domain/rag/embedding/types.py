"""
Embedding data types
"""

from typing import List
from pydantic import BaseModel


class EmbeddingResult(BaseModel):
    """Query embedding plus the usage it was billed for"""
    embedding: List[float]
    tokens_used: int
    cost_usd: float
    model: str
