"""
Request/Response schemas for experiment generation
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class GenerateExperimentsRequest(BaseModel):
    """Generate candidate experiments for a project"""
    project_id: str
    include_existing_config: bool = True
    embedding_models: Optional[List[str]] = None
    top_k_values: Optional[List[int]] = None
    thresholds: Optional[List[float]] = None
    max_experiments: int = 50


class GenerateExperimentsResponse(BaseModel):
    success: bool
    created_count: int
    skipped_count: int
    batch_id: str
    experiments: List[Dict[str, Any]]
    existing: List[Dict[str, Any]] = []
    generation_config: Dict[str, Any]
