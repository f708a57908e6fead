"""
Budget data types
"""

from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel


class OperationType(str, Enum):
    QUERY = "query"
    EXPERIMENT_RUN = "experiment_run"
    EVALUATION = "evaluation"
    OPTIMIZATION = "optimization"


class EnforcementMode(str, Enum):
    WARN = "warn"
    ABORT = "abort"
    AUTO_DOWNGRADE = "auto_downgrade"


class DecisionAction(str, Enum):
    PROCEED = "proceed"
    WARN = "warn"
    ABORT = "abort"
    DOWNGRADE = "downgrade"


class BudgetStatusLevel(str, Enum):
    UNDER_BUDGET = "under_budget"
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    OVER_BUDGET = "over_budget"


class OperationConfig(BaseModel):
    """Configuration an operation is about to run with (all optional)"""
    embedding_model: Optional[str] = None
    top_k: Optional[int] = None
    chunk_overlap: Optional[int] = None
    num_experiments: Optional[int] = None
    num_queries: Optional[int] = None


class DowngradeConfig(BaseModel):
    """Fully resolved configuration that the guard reasons about"""
    embedding_model: str = "text-embedding-3-small"
    top_k: int = 10
    chunk_overlap: int = 50
    num_experiments: int = 10


class BudgetStatus(BaseModel):
    monthly_budget_usd: float
    current_spending_usd: float
    remaining_budget_usd: float
    estimated_cost_usd: float
    will_exceed_budget: bool
    burn_rate_per_day_usd: float
    projected_month_end_usd: float
    on_track: bool
    enforcement_mode: EnforcementMode
    max_cost_per_query_usd: float


class BudgetDecision(BaseModel):
    action: DecisionAction
    reason: str
    original_config: Optional[DowngradeConfig] = None
    adjusted_config: Optional[DowngradeConfig] = None
    estimated_cost_usd: float
    adjusted_cost_usd: Optional[float] = None
    quality_impact_percent: Optional[float] = None
    cost_savings_percent: Optional[float] = None

    @property
    def can_proceed(self) -> bool:
        return self.action != DecisionAction.ABORT

    @property
    def use_config(self) -> Optional[DowngradeConfig]:
        return self.adjusted_config or self.original_config

    @property
    def committed_cost_usd(self) -> float:
        """Amount the caller will spend if it goes ahead"""
        if self.adjusted_cost_usd is not None:
            return self.adjusted_cost_usd
        return self.estimated_cost_usd

    def to_log_record(self) -> Dict[str, Any]:
        return {
            "decision_type": self.action.value,
            "reason": self.reason,
            "original_config": self.original_config.model_dump() if self.original_config else None,
            "adjusted_config": self.adjusted_config.model_dump() if self.adjusted_config else None,
            "estimated_cost_usd": self.estimated_cost_usd,
            "adjusted_cost_usd": self.adjusted_cost_usd,
            "quality_impact_percent": self.quality_impact_percent,
            "cost_savings_percent": self.cost_savings_percent,
        }


class BudgetCheckResult(BaseModel):
    budget_status: BudgetStatus
    decision: BudgetDecision
    can_proceed: bool
    use_config: Optional[DowngradeConfig] = None
    reservation_id: Optional[str] = None
