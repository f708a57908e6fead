"""
Request/Response schemas for the optimization pipeline
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class OptimizeProjectRequest(BaseModel):
    project_id: str
    eval_set_id: str
    max_experiments: int = 20
    baseline_strategy: str = "balanced"
    baseline_metric: str = "mean_mrr"
    skip_budget_check: bool = False


class PhaseResult(BaseModel):
    """Outcome of one pipeline phase"""
    phase: str
    status: str  # completed, failed, skipped
    message: str
    data: Optional[Dict[str, Any]] = None


class OptimizeProjectResponse(BaseModel):
    success: bool
    project_id: str
    eval_set_id: str
    baseline_strategy: Optional[str] = None
    phases: List[PhaseResult]
    best_config: Optional[Dict[str, Any]] = None
    summary: Optional[str] = None
    cost_summary: Optional[Dict[str, Any]] = None
    budget_decision: Optional[Dict[str, Any]] = None
    budget_exceeded: bool = False
    error: Optional[str] = None
    duration_ms: float
    metrics: Optional[Dict[str, int]] = None


class CancelOptimizationResponse(BaseModel):
    success: bool
    project_id: str
    cancelled: bool
