"""
Evaluation endpoints
"""

import logging
from fastapi import APIRouter, HTTPException, Depends, status
from api.schemas.evaluation import (
    RunEvaluationRequest,
    RunEvaluationResponse,
    RunProjectEvaluationsRequest,
    RunProjectEvaluationsResponse,
    CompareExperimentsRequest,
    CompareExperimentsResponse,
    RunRecordResponse,
    ExportRunResponse,
)
from services.evaluation_service import EvaluationService
from api.dependencies import get_evaluation_service
from api.errors import to_http_error
from core.exceptions import OptimizerException

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/evaluation", tags=["evaluation"])


@router.post("/run", response_model=RunEvaluationResponse)
async def run_evaluation(
    request: RunEvaluationRequest,
    service: EvaluationService = Depends(get_evaluation_service)
):
    """Evaluate one experiment against one eval set"""
    try:
        result = await service.run_evaluation(request.experiment_id, request.eval_set_id)
        return RunEvaluationResponse(success=True, **result.model_dump(mode="json"))
    except OptimizerException as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Unexpected error running evaluation: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to run evaluation"
        )


@router.post("/project", response_model=RunProjectEvaluationsResponse)
async def run_project_evaluations(
    request: RunProjectEvaluationsRequest,
    service: EvaluationService = Depends(get_evaluation_service)
):
    """
    Evaluate the project's active experiments and select a baseline.

    Strategies: quality_only, cost_aware, latency_aware, balanced.
    """
    try:
        return await service.run_project_evaluations(
            project_id=request.project_id,
            eval_set_id=request.eval_set_id,
            experiment_ids=request.experiment_ids,
            auto_generated_only=request.auto_generated_only,
            select_baseline=request.select_baseline,
            baseline_strategy=request.baseline_strategy,
            baseline_metric=request.baseline_metric,
            max_cost_usd=request.max_cost_usd,
        )
    except OptimizerException as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Unexpected error running project evaluations: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to run project evaluations"
        )


@router.post("/compare", response_model=CompareExperimentsResponse)
async def compare_experiments(
    request: CompareExperimentsRequest,
    service: EvaluationService = Depends(get_evaluation_service)
):
    """Rank experiments by a metric over their best completed run"""
    try:
        return await service.compare_experiments(
            experiment_ids=request.experiment_ids,
            project_id=request.project_id,
            metric=request.metric,
            eval_set_id=request.eval_set_id,
            include_cost_analysis=request.include_cost_analysis,
        )
    except OptimizerException as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Unexpected error comparing experiments: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compare experiments"
        )


@router.get("/runs/{run_id}", response_model=RunRecordResponse)
async def get_run(
    run_id: str,
    service: EvaluationService = Depends(get_evaluation_service)
):
    """Get a stored run with its per-query results"""
    try:
        return await service.get_run(run_id)
    except OptimizerException as e:
        raise to_http_error(e)


@router.post("/runs/{run_id}/export", response_model=ExportRunResponse)
async def export_run(
    run_id: str,
    service: EvaluationService = Depends(get_evaluation_service)
):
    """Export a stored run as JSON and CSV files"""
    try:
        files = await service.export_run(run_id)
        return ExportRunResponse(run_id=run_id, files=files)
    except OptimizerException as e:
        raise to_http_error(e)
    except OSError as e:
        logger.error(f"Failed to write export for run {run_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to export run"
        )
