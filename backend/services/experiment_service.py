"""
Experiment service - generates candidate experiments for a project
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from core.exceptions import InputError, NotFoundError
from domain.evaluation.experiment_generator import (
    DEFAULT_EMBEDDING_MODELS,
    DEFAULT_MAX_EXPERIMENTS,
    DEFAULT_SIMILARITY_THRESHOLDS,
    DEFAULT_TOP_K_VALUES,
    generate_candidates,
    project_chunking_config,
)
from services.base import BaseService
from storage.base import BaseOptimizerStore

logger = logging.getLogger(__name__)


class ExperimentService(BaseService):
    """Creates auto-generated experiments"""

    def __init__(self, store: BaseOptimizerStore):
        self.store = store

    async def generate_experiments(
        self,
        project_id: str,
        include_existing_config: bool = True,
        embedding_models: Optional[List[str]] = None,
        top_k_values: Optional[List[int]] = None,
        thresholds: Optional[List[float]] = None,
        max_experiments: int = DEFAULT_MAX_EXPERIMENTS
    ) -> Dict[str, Any]:
        """
        Generate the candidate grid for a project and store the new candidates.

        Candidates whose name already exists in the project are skipped and,
        when still active, returned under `existing`. All created experiments
        share one generation batch id.
        """
        if not project_id:
            raise InputError("project_id is required")
        if max_experiments < 1:
            raise InputError("max_experiments must be at least 1")
        if top_k_values and any(k < 1 for k in top_k_values):
            raise InputError("top_k values must be positive")
        if thresholds and any(not 0.0 <= t <= 1.0 for t in thresholds):
            raise InputError("similarity thresholds must be between 0 and 1")

        project = await self.store.get_project(project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")

        candidates = generate_candidates(
            project,
            embedding_models=embedding_models,
            top_k_values=top_k_values,
            thresholds=thresholds,
            max_experiments=max_experiments,
            include_existing_config=include_existing_config,
        )

        existing_names = await self.store.get_experiment_names(project_id)
        batch_id = str(uuid.uuid4())
        new_specs = []
        skipped_names = []
        for candidate in candidates:
            if candidate["name"] in existing_names:
                skipped_names.append(candidate["name"])
                continue
            existing_names.add(candidate["name"])
            new_specs.append({
                **candidate,
                "status": "active",
                "auto_generated": True,
                "generation_batch_id": batch_id,
            })

        created = await self.store.create_experiments(project_id, new_specs) if new_specs else []
        logger.info(
            f"Generated {len(created)} experiments for project {project_id} "
            f"({len(skipped_names)} skipped, batch {batch_id})"
        )

        # Active experiments already in the project that belong to this grid
        existing = []
        if skipped_names:
            by_name = {e["name"]: e for e in await self.store.list_experiments(project_id=project_id)}
            existing = [by_name[name] for name in skipped_names if name in by_name]

        return {
            "success": True,
            "created_count": len(created),
            "skipped_count": len(skipped_names),
            "batch_id": batch_id,
            "experiments": created,
            "existing": existing,
            "generation_config": {
                "embedding_models": embedding_models or [model for model, _ in DEFAULT_EMBEDDING_MODELS],
                "top_k_values": top_k_values or DEFAULT_TOP_K_VALUES,
                "thresholds": thresholds or DEFAULT_SIMILARITY_THRESHOLDS,
                "chunking_config": project_chunking_config(project) if include_existing_config else None,
                "max_experiments": max_experiments,
            },
        }
