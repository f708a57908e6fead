"""
Optimization pipeline endpoint
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, status

from api.dependencies import get_optimization_service
from api.errors import to_http_error
from api.schemas.optimization import CancelOptimizationResponse, OptimizeProjectRequest, OptimizeProjectResponse
from services.optimization_service import OptimizationService
from core.exceptions import OptimizerException

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/optimization", tags=["optimization"])


@router.post("/optimize", response_model=OptimizeProjectResponse)
async def optimize_project(
    request: OptimizeProjectRequest,
    optimization_service: OptimizationService = Depends(get_optimization_service)
):
    """
    Run the full optimization pipeline for a project.

    Phases: budget_check, generate_experiments, run_evaluations, select_baseline.
    A budget abort is returned in the body with `budget_exceeded: true`.
    """
    try:
        return await optimization_service.optimize_project(
            project_id=request.project_id,
            eval_set_id=request.eval_set_id,
            max_experiments=request.max_experiments,
            baseline_strategy=request.baseline_strategy,
            baseline_metric=request.baseline_metric,
            skip_budget_check=request.skip_budget_check,
        )
    except OptimizerException as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Unexpected error optimizing project: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to optimize project"
        )


@router.post("/{project_id}/cancel", response_model=CancelOptimizationResponse)
async def cancel_optimization(
    project_id: str,
    optimization_service: OptimizationService = Depends(get_optimization_service)
):
    """
    Cancel the optimization or evaluation sweep running for a project.

    Experiments and queries not yet started are skipped; work in flight is
    finalized. `cancelled` is false when nothing was running.
    """
    cancelled = optimization_service.cancel(project_id)
    return CancelOptimizationResponse(success=True, project_id=project_id, cancelled=cancelled)
