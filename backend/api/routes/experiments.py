"""
Experiment generation endpoints
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, status

from api.dependencies import get_experiment_service
from api.errors import to_http_error
from api.schemas.experiments import GenerateExperimentsRequest, GenerateExperimentsResponse
from services.experiment_service import ExperimentService
from core.exceptions import OptimizerException

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/experiments", tags=["experiments"])


@router.post("/generate", response_model=GenerateExperimentsResponse)
async def generate_experiments(
    request: GenerateExperimentsRequest,
    experiment_service: ExperimentService = Depends(get_experiment_service)
):
    """
    Generate candidate experiments for a project.

    Grid of embedding models x top_k values x similarity thresholds, capped
    at `max_experiments`. Names that already exist are skipped.
    """
    try:
        return await experiment_service.generate_experiments(
            project_id=request.project_id,
            include_existing_config=request.include_existing_config,
            embedding_models=request.embedding_models,
            top_k_values=request.top_k_values,
            thresholds=request.thresholds,
            max_experiments=request.max_experiments,
        )
    except OptimizerException as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Unexpected error generating experiments: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate experiments"
        )
