"""
Budget API endpoints
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, status

from api.dependencies import get_budget_service
from api.errors import to_http_error
from api.schemas.budget import (
    CheckBudgetRequest,
    CheckBudgetResponse,
    BudgetReportRequest,
    BudgetReportResponse,
)
from services.budget_service import BudgetService
from core.exceptions import OptimizerException

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/budget", tags=["budget"])


@router.post("/check", response_model=CheckBudgetResponse)
async def check_budget(
    request: CheckBudgetRequest,
    budget_service: BudgetService = Depends(get_budget_service)
):
    """
    Check an operation against the project's monthly budget.

    Returns proceed, warn, abort or downgrade. With `reserve`, the amount
    the operation will spend is held until committed or released.
    """
    try:
        result = await budget_service.check_budget(
            project_id=request.project_id,
            operation_type=request.operation_type,
            config=request.config,
            estimated_cost_usd=request.estimated_cost_usd,
            reserve=request.reserve,
        )
        return CheckBudgetResponse(**result.model_dump(mode="json"))
    except OptimizerException as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Unexpected error checking budget: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check budget"
        )


@router.post("/report", response_model=BudgetReportResponse)
async def budget_report(
    request: BudgetReportRequest,
    budget_service: BudgetService = Depends(get_budget_service)
):
    """Current month spend, projections, savings and recommendations"""
    try:
        result = await budget_service.budget_report(
            project_id=request.project_id,
            include_history=request.include_history,
            days=request.days,
        )
        return BudgetReportResponse(
            report=result["report"],
            summary=result["summary"],
            recommendations=result["report"]["recommendations"],
        )
    except OptimizerException as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Unexpected error building budget report: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to build budget report"
        )
