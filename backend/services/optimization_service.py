"""
Optimization service - end-to-end pipeline from budget check to baseline selection
"""

import logging
import time
from contextlib import nullcontext
from typing import Any, Dict, List, Optional

from core.exceptions import InputError, NotFoundError
from domain.budget.cost_estimator import most_expensive_model
from domain.budget.types import DecisionAction, OperationConfig, OperationType
from domain.evaluation.cancellation import CancellationRegistry, CancellationToken
from domain.evaluation.evaluator import CANCELLED_MESSAGE
from domain.evaluation.experiment_generator import DEFAULT_EMBEDDING_MODELS
from domain.evaluation.scoring import DEFAULT_BASELINE_METRIC, BaselineStrategy
from services.base import BaseService
from services.budget_service import BudgetService
from services.evaluation_service import EvaluationService, validate_baseline_metric, validate_strategy
from services.experiment_service import ExperimentService
from storage.base import BaseOptimizerStore

logger = logging.getLogger(__name__)

DEFAULT_NUM_QUERIES = 10

PHASES = ["budget_check", "generate_experiments", "run_evaluations", "select_baseline"]

STRATEGY_DESCRIPTIONS = {
    BaselineStrategy.QUALITY_ONLY: "highest quality",
    BaselineStrategy.COST_AWARE: "best quality/cost ratio",
    BaselineStrategy.LATENCY_AWARE: "best quality/latency ratio",
    BaselineStrategy.BALANCED: "most efficient overall",
}


def phase(name: str, status: str, message: str, data: Dict[str, Any] = None) -> Dict[str, Any]:
    return {"phase": name, "status": status, "message": message, "data": data}


def optimization_summary(best_config: Optional[Dict[str, Any]], budget_decision: Optional[Dict[str, Any]]) -> str:
    if best_config is None:
        return "Optimization completed but no winning configuration identified"

    summary = (
        f"Best RAG config found: {best_config['experiment_name']} "
        f"(Quality: {best_config['quality_score'] * 100:.1f}%, "
        f"Cost: ${best_config['cost_usd']:.6f}, "
        f"Latency: {best_config['avg_latency_ms']:.0f}ms)."
    )
    if best_config.get("comparison_note"):
        summary += f" {best_config['comparison_note']}"
    if budget_decision and budget_decision["action"] == DecisionAction.DOWNGRADE.value:
        summary += (
            f" Quality reduced by {abs(budget_decision.get('quality_impact_percent') or 0):.0f}%, "
            f"cost reduced by {budget_decision.get('cost_savings_percent') or 0:.0f}%."
        )
    return summary


class OptimizationService(BaseService):
    """Runs the optimization phases in order, recording each one"""

    def __init__(
        self,
        store: BaseOptimizerStore,
        budget_service: BudgetService,
        experiment_service: ExperimentService,
        evaluation_service: EvaluationService,
        cancellations: Optional[CancellationRegistry] = None
    ):
        self.store = store
        self.budget_service = budget_service
        self.experiment_service = experiment_service
        self.evaluation_service = evaluation_service
        self.cancellations = cancellations

    def cancel(self, project_id: str) -> bool:
        """Cancel the pipeline or sweep running for a project; False when none is"""
        if self.cancellations is None:
            return False
        return self.cancellations.cancel(project_id)

    async def optimize_project(
        self,
        project_id: str,
        eval_set_id: str,
        max_experiments: int = 20,
        baseline_strategy: str = BaselineStrategy.BALANCED.value,
        baseline_metric: str = DEFAULT_BASELINE_METRIC,
        skip_budget_check: bool = False,
        cancellation: Optional[CancellationToken] = None
    ) -> Dict[str, Any]:
        """
        Budget check, generate experiments, evaluate them, select a baseline.

        A failing phase is recorded and the pipeline moves on. Only invalid
        input and a budget abort stop it early; an abort is returned as a
        `budget_exceeded` result rather than raised. While it runs, the
        pipeline can be cancelled by project id.

        Raises:
            InputError: invalid arguments, or a sweep is already running for the project
            NotFoundError: unknown project or eval set
        """
        strategy = validate_strategy(baseline_strategy)
        metric = validate_baseline_metric(baseline_metric)
        if max_experiments < 1:
            raise InputError("max_experiments must be at least 1")
        if not project_id or not eval_set_id:
            raise InputError("project_id and eval_set_id are required")
        if await self.store.get_project(project_id) is None:
            raise NotFoundError(f"Project {project_id} not found")
        eval_set = await self.store.get_eval_set(eval_set_id)
        if eval_set is None:
            raise NotFoundError(f"Evaluation set {eval_set_id} not found")
        if eval_set["project_id"] != project_id:
            raise InputError(f"Evaluation set {eval_set_id} does not belong to project {project_id}")

        if self.cancellations is not None:
            tracker = self.cancellations.track(project_id, cancellation)
        else:
            tracker = nullcontext(cancellation)

        with tracker as token:
            return await self._optimize(
                project_id, eval_set, max_experiments, strategy, metric, skip_budget_check, token
            )

    async def _optimize(
        self,
        project_id: str,
        eval_set: Dict[str, Any],
        max_experiments: int,
        strategy: BaselineStrategy,
        metric: str,
        skip_budget_check: bool,
        cancellation: Optional[CancellationToken]
    ) -> Dict[str, Any]:
        eval_set_id = eval_set["id"]
        started = time.perf_counter()
        num_queries = eval_set.get("query_count") or DEFAULT_NUM_QUERIES
        logger.info(
            f"Optimizing project {project_id} (eval_set: {eval_set_id}, strategy: {strategy.value}, "
            f"max_experiments: {max_experiments})"
        )

        phases: List[Dict[str, Any]] = []
        budget_decision = None
        reservation_id = None
        effective_max = max_experiments
        # Grid overrides and spend ceiling applied after a downgrade
        generation: Dict[str, Any] = {}
        cost_limit = None

        # Phase 0: budget check
        if skip_budget_check:
            phases.append(phase("budget_check", "skipped", "Budget check skipped"))
        else:
            try:
                # Priced at the most expensive grid model so the estimate bounds the sweep
                priciest = most_expensive_model(model for model, _ in DEFAULT_EMBEDDING_MODELS)
                check = await self.budget_service.check_budget(
                    project_id,
                    OperationType.OPTIMIZATION,
                    config=OperationConfig(
                        embedding_model=priciest,
                        num_queries=num_queries,
                        num_experiments=max_experiments,
                    ),
                    reserve=True,
                )
                budget_decision = check.decision.model_dump(mode="json")
                reservation_id = check.reservation_id
                action = check.decision.action

                if action == DecisionAction.ABORT:
                    phases.append(phase(
                        "budget_check",
                        "failed",
                        check.decision.reason,
                        {"budget_status": check.budget_status.model_dump(mode="json")},
                    ))
                    logger.warning(f"Optimization of project {project_id} aborted: {check.decision.reason}")
                    return {
                        "success": False,
                        "project_id": project_id,
                        "eval_set_id": eval_set_id,
                        "phases": phases,
                        "error": check.decision.reason,
                        "budget_exceeded": True,
                        "budget_decision": budget_decision,
                        "duration_ms": (time.perf_counter() - started) * 1000,
                    }

                cost_limit = check.decision.committed_cost_usd
                if action == DecisionAction.DOWNGRADE:
                    original = check.decision.original_config
                    adjusted = check.use_config
                    effective_max = adjusted.num_experiments
                    if adjusted.embedding_model != original.embedding_model:
                        generation["embedding_models"] = [adjusted.embedding_model]
                    if adjusted.top_k != original.top_k:
                        generation["top_k_values"] = [adjusted.top_k]
                    phases.append(phase("budget_check", "completed", check.decision.reason, {
                        "original_experiments": max_experiments,
                        "adjusted_experiments": effective_max,
                        "adjusted_config": adjusted.model_dump(),
                        "adjusted_cost_usd": check.decision.adjusted_cost_usd,
                        "quality_impact_percent": check.decision.quality_impact_percent,
                        "cost_savings_percent": check.decision.cost_savings_percent,
                    }))
                elif action == DecisionAction.WARN:
                    phases.append(phase("budget_check", "completed", check.decision.reason, {"warning": True}))
                else:
                    phases.append(phase("budget_check", "completed", "Budget check passed", {
                        "remaining_budget_usd": check.budget_status.remaining_budget_usd,
                    }))
            except Exception as e:
                logger.error(f"Budget check failed for project {project_id}: {e}", exc_info=True)
                phases.append(phase("budget_check", "failed", f"Failed to check budget: {e}"))

        evaluation = None
        try:
            evaluation = await self._run_phases(
                phases,
                project_id,
                eval_set_id,
                effective_max,
                generation,
                cost_limit,
                strategy,
                metric,
                cancellation,
            )
        finally:
            await self._settle_reservation(reservation_id, phases)

        best_config = evaluation.get("baseline") if evaluation else None
        total_cost = evaluation.get("total_cost_usd", 0.0) if evaluation else 0.0
        summary = optimization_summary(best_config, budget_decision)

        report = await self._final_report(project_id)
        successful = sum(1 for p in phases if p["status"] == "completed")
        failed = sum(1 for p in phases if p["status"] == "failed")
        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(f"Optimization of project {project_id} completed in {duration_ms:.0f}ms: {summary}")

        return {
            "success": successful > 0,
            "project_id": project_id,
            "eval_set_id": eval_set_id,
            "baseline_strategy": strategy.value,
            "phases": phases,
            "best_config": best_config,
            "summary": summary,
            "cost_summary": {
                "total_evaluation_cost_usd": total_cost,
                "selected_config_cost_per_query_usd": (
                    best_config["cost_usd"] / num_queries if best_config else 0.0
                ),
                "budget_status": report["projections"]["status"] if report else None,
                "remaining_budget_usd": report["current_period"]["remaining_budget_usd"] if report else None,
            },
            "budget_decision": budget_decision,
            "budget_exceeded": False,
            "duration_ms": duration_ms,
            "metrics": {
                "successful_phases": successful,
                "failed_phases": failed,
                "total_phases": len(phases),
            },
        }

    async def _run_phases(
        self,
        phases: List[Dict[str, Any]],
        project_id: str,
        eval_set_id: str,
        max_experiments: int,
        generation: Dict[str, Any],
        cost_limit: Optional[float],
        strategy: BaselineStrategy,
        metric: str,
        cancellation: Optional[CancellationToken]
    ) -> Optional[Dict[str, Any]]:
        """Phases 1-3. Returns the evaluation sweep result, if it ran."""

        def cancelled_from(index: int) -> bool:
            if cancellation is None or not cancellation.cancelled:
                return False
            for name in PHASES[index:]:
                phases.append(phase(name, "skipped", CANCELLED_MESSAGE))
            return True

        # Phase 1: generate experiments
        if cancelled_from(1):
            return None
        experiment_ids: List[str] = []
        try:
            generated = await self.experiment_service.generate_experiments(
                project_id, max_experiments=max_experiments, **generation
            )
            # This run's grid: new candidates plus the ones a previous run already created
            grid = generated["experiments"] + generated["existing"]
            experiment_ids = [e["id"] for e in grid][:max_experiments]
            phases.append(phase(
                "generate_experiments",
                "completed",
                f"Generated {generated['created_count']} experiments ({generated['skipped_count']} skipped)",
                {
                    "created_count": generated["created_count"],
                    "skipped_count": generated["skipped_count"],
                    "existing_count": len(generated["existing"]),
                    "batch_id": generated["batch_id"],
                },
            ))
        except Exception as e:
            logger.error(f"Experiment generation failed for project {project_id}: {e}", exc_info=True)
            phases.append(phase("generate_experiments", "failed", f"Failed to generate experiments: {e}"))

        # Phase 2: run evaluations
        if cancelled_from(2):
            return None
        evaluation = None
        if not experiment_ids:
            phases.append(phase("run_evaluations", "skipped", "No experiments to evaluate"))
        else:
            try:
                evaluation = await self.evaluation_service.run_project_evaluations(
                    project_id,
                    eval_set_id,
                    experiment_ids=experiment_ids,
                    select_baseline=True,
                    baseline_strategy=strategy,
                    baseline_metric=metric,
                    cancellation=cancellation,
                    max_cost_usd=cost_limit,
                    enforce_budget=False,
                )
                message = (
                    f"Evaluated {evaluation['completed']}/{evaluation['total_experiments']} experiments "
                    f"(Total cost: ${evaluation['total_cost_usd']:.6f})"
                )
                if evaluation["over_budget"]:
                    message += f"; {evaluation['over_budget']} left out to stay within budget"
                phases.append(phase(
                    "run_evaluations",
                    "completed",
                    message,
                    {
                        "completed": evaluation["completed"],
                        "failed": evaluation["failed"],
                        "skipped": evaluation["skipped"],
                        "over_budget": evaluation["over_budget"],
                        "total_cost_usd": evaluation["total_cost_usd"],
                    },
                ))
            except Exception as e:
                logger.error(f"Evaluations failed for project {project_id}: {e}", exc_info=True)
                phases.append(phase("run_evaluations", "failed", f"Failed to run evaluations: {e}"))

        # Phase 3: baseline
        if cancelled_from(3):
            return evaluation
        baseline = evaluation.get("baseline") if evaluation else None
        if baseline:
            phases.append(phase(
                "select_baseline",
                "completed",
                f"Selected {STRATEGY_DESCRIPTIONS[strategy]}: {baseline['experiment_name']}",
                baseline,
            ))
        else:
            phases.append(phase("select_baseline", "skipped", "No baseline selected - no successful evaluations"))
        return evaluation

    async def _settle_reservation(self, reservation_id: Optional[str], phases: List[Dict[str, Any]]) -> None:
        """Evaluation spend is in the cost logs once evaluations ran; otherwise give the amount back"""
        if reservation_id is None:
            return
        evaluated = any(p["phase"] == "run_evaluations" and p["status"] == "completed" for p in phases)
        if evaluated:
            await self.budget_service.commit_reservation(reservation_id)
        else:
            await self.budget_service.release_reservation(reservation_id)

    async def _final_report(self, project_id: str) -> Optional[Dict[str, Any]]:
        try:
            result = await self.budget_service.budget_report(project_id, include_history=False)
            return result["report"]
        except Exception as e:
            logger.error(f"Failed to build budget report for project {project_id}: {e}")
            return None
