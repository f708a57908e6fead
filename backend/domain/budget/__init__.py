"""
Budget guard, cost estimation and reporting
"""

from domain.budget.cost_estimator import estimate_operation_cost, embedding_cost, EMBEDDING_COSTS
from domain.budget.guard import decide, find_cheaper_config, build_budget_status, DOWNGRADE_TIERS
from domain.budget.report import build_budget_report
from domain.budget.types import (
    BudgetDecision,
    BudgetStatus,
    DecisionAction,
    EnforcementMode,
    OperationConfig,
    OperationType,
)

__all__ = [
    "estimate_operation_cost",
    "embedding_cost",
    "EMBEDDING_COSTS",
    "decide",
    "find_cheaper_config",
    "build_budget_status",
    "DOWNGRADE_TIERS",
    "build_budget_report",
    "BudgetDecision",
    "BudgetStatus",
    "DecisionAction",
    "EnforcementMode",
    "OperationConfig",
    "OperationType",
]
