"""
Request/Response schemas for budget checks and reports
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel

from domain.budget.types import BudgetDecision, BudgetStatus, DowngradeConfig, OperationConfig


class CheckBudgetRequest(BaseModel):
    """Pre-flight check of an operation against the monthly budget"""
    project_id: str
    operation_type: str
    estimated_cost_usd: Optional[float] = None
    config: Optional[OperationConfig] = None
    reserve: bool = False


class CheckBudgetResponse(BaseModel):
    success: bool = True
    budget_status: BudgetStatus
    decision: BudgetDecision
    can_proceed: bool
    use_config: Optional[DowngradeConfig] = None
    reservation_id: Optional[str] = None


class BudgetReportRequest(BaseModel):
    project_id: str
    include_history: bool = True
    days: int = 30


class BudgetReportResponse(BaseModel):
    success: bool = True
    report: Dict[str, Any]
    summary: str
    recommendations: List[str]
