"""
Evaluation data types
"""

from enum import Enum
from typing import List, Dict, Any, Optional
from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RetrievalConfig(BaseModel):
    """Retrieval parameters of an experiment"""
    top_k: int = 5
    similarity_threshold: float = 0.7
    filters: Dict[str, Any] = Field(default_factory=dict)


class Experiment(BaseModel):
    """A named retrieval configuration"""
    id: str
    project_id: str
    name: str
    description: Optional[str] = None
    chunking_config_hash: Optional[str] = None
    embedding_model: str = "text-embedding-3-small"
    embedding_model_version: Optional[str] = None
    retrieval_config: RetrievalConfig = Field(default_factory=RetrievalConfig)
    status: str = "active"
    auto_generated: bool = False
    generation_batch_id: Optional[str] = None
    is_baseline: bool = False
    baseline_strategy: Optional[str] = None


class EvalQuery(BaseModel):
    """One labeled test case"""
    id: str
    query: str
    expected_chunk_ids: List[str] = Field(default_factory=list)
    expected_document_ids: List[str] = Field(default_factory=list)
    relevance_scores: Dict[str, float] = Field(default_factory=dict)


class EvalSet(BaseModel):
    id: str
    project_id: str
    name: str
    description: Optional[str] = None
    version: int = 1
    query_count: int = 0


class QueryMetrics(BaseModel):
    recall_at_k: float
    precision_at_k: float
    mrr: float
    ndcg: float
    hit_rate: float


class QueryResult(BaseModel):
    """Per-query result kept on the run for auditability"""
    query_id: str
    query: str
    retrieved_chunk_ids: List[str]
    retrieved_document_ids: List[str]
    expected_chunk_ids: List[str]
    expected_document_ids: List[str]
    latency_ms: float
    metrics: QueryMetrics


class QueryOutcome(BaseModel):
    """
    Isolated result of evaluating one query.

    Produced by a single worker task and merged into the run aggregates
    only after every task has finished.
    """
    query_id: str
    succeeded: bool
    cancelled: bool = False
    result: Optional[QueryResult] = None
    error: Optional[str] = None
    embedding_calls: int = 0
    tokens_used: int = 0
    cost_usd: float = 0.0
    latency_ms: Optional[float] = None


class AggregateMetrics(BaseModel):
    mean_recall_at_k: float = 0.0
    mean_precision_at_k: float = 0.0
    mean_mrr: float = 0.0
    mean_ndcg: float = 0.0
    mean_hit_rate: float = 0.0
    query_count: int = 0
    successful_queries: int = 0
    failed_queries: int = 0


class CostMetrics(BaseModel):
    embedding_calls: int = 0
    embedding_tokens: int = 0
    embedding_cost_usd: float = 0.0
    evaluation_calls: int = 0
    total_tokens: int = 0
    estimated_usd: float = 0.0
    model_used: str = ""


class LatencyStats(BaseModel):
    avg_query_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    min_latency_ms: float = 0.0
    max_latency_ms: float = 0.0


class RunResult(BaseModel):
    """Outcome of one experiment evaluated against one eval set"""
    run_id: str
    experiment_id: str
    eval_set_id: str
    status: RunStatus
    metrics: AggregateMetrics
    cost_metrics: CostMetrics
    latency_stats: LatencyStats
    summary: str
    query_results: List[QueryResult] = Field(default_factory=list)
    error_message: Optional[str] = None
    persisted: bool = True
    duration_ms: float = 0.0


class ExperimentResult(BaseModel):
    """Result of one experiment inside a multi-experiment sweep"""
    experiment_id: str
    experiment_name: str
    run_id: Optional[str] = None
    status: str  # completed, failed, skipped
    metrics: Optional[AggregateMetrics] = None
    cost_metrics: Optional[CostMetrics] = None
    latency_stats: Optional[LatencyStats] = None
    efficiency_score: Optional[float] = None
    error: Optional[str] = None


class BaselineSelection(BaseModel):
    experiment_id: str
    experiment_name: str
    strategy: str
    quality_score: float
    cost_usd: float
    avg_latency_ms: float
    efficiency_score: float
    comparison_note: Optional[str] = None
