"""
Pydantic models for evaluation endpoints
"""

from pydantic import BaseModel, Field
from typing import List, Dict, Any, Optional

from domain.evaluation.types import (
    AggregateMetrics,
    BaselineSelection,
    CostMetrics,
    ExperimentResult,
    LatencyStats,
    QueryResult,
)


class RunEvaluationRequest(BaseModel):
    """Request to evaluate one experiment against one eval set"""
    experiment_id: str
    eval_set_id: str


class RunEvaluationResponse(BaseModel):
    success: bool
    run_id: str
    experiment_id: str
    eval_set_id: str
    status: str
    metrics: AggregateMetrics
    cost_metrics: CostMetrics
    latency_stats: LatencyStats
    summary: str
    query_results: List[QueryResult]
    error_message: Optional[str] = None
    persisted: bool
    duration_ms: float


class RunProjectEvaluationsRequest(BaseModel):
    """Request to evaluate the active experiments of a project"""
    project_id: str
    eval_set_id: str
    experiment_ids: Optional[List[str]] = None
    auto_generated_only: bool = False
    select_baseline: bool = True
    baseline_strategy: str = "quality_only"
    baseline_metric: str = "mean_mrr"
    max_cost_usd: Optional[float] = None


class RunProjectEvaluationsResponse(BaseModel):
    success: bool
    project_id: str
    eval_set_id: str
    baseline_strategy: str
    baseline_metric: str
    message: Optional[str] = None
    total_experiments: int
    completed: int
    failed: int
    skipped: int = 0
    over_budget: int = 0
    total_cost_usd: float
    results: List[ExperimentResult]
    baseline: Optional[BaselineSelection] = None
    baseline_updated: bool
    summary: str
    duration_ms: float


class CompareExperimentsRequest(BaseModel):
    """Compare experiments by id, or every active experiment of a project"""
    experiment_ids: Optional[List[str]] = None
    project_id: Optional[str] = None
    metric: str = "mean_mrr"
    eval_set_id: Optional[str] = None
    include_cost_analysis: bool = True


class CompareExperimentsResponse(BaseModel):
    success: bool
    experiments: List[Dict[str, Any]]
    winner: Optional[Dict[str, Any]] = None
    comparison_details: Dict[str, Any]
    cost_analysis: Optional[Dict[str, Any]] = None


class RunRecordResponse(BaseModel):
    """Stored run"""
    id: str
    experiment_id: str
    eval_set_id: str
    eval_set_version: int
    status: str
    metrics: Optional[Dict[str, Any]] = None
    cost_metrics: Optional[Dict[str, Any]] = None
    latency_stats: Optional[Dict[str, Any]] = None
    query_results: List[Dict[str, Any]] = Field(default_factory=list)
    summary: Optional[str] = None
    error_message: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class ExportRunResponse(BaseModel):
    run_id: str
    files: Dict[str, str]
