"""
Retrieval data types
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class RetrievalResult(BaseModel):
    """
    Standardized search hit.

    The search provider returns these ordered by descending score.
    """
    chunk_id: str
    score: float
    document_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
