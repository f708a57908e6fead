"""
Evaluation service - single runs, project sweeps with baseline selection, comparison and export
"""

import logging
import time
from contextlib import nullcontext
from typing import Any, Dict, List, Optional, Union

from core.config import settings
from core.exceptions import BudgetExceeded, InputError, NotFoundError, OptimizerException
from domain.budget.cost_estimator import estimate_evaluation_cost
from domain.budget.types import BudgetCheckResult, DecisionAction, OperationType
from domain.evaluation.cancellation import CancellationRegistry, CancellationToken
from domain.evaluation.comparison import cost_analysis, experiment_summary, rank_experiments
from domain.evaluation.evaluator import CANCELLED_MESSAGE, RunEvaluator
from domain.evaluation.reporter import EvaluationReporter
from domain.evaluation.scoring import (
    BASELINE_METRICS,
    DEFAULT_BASELINE_METRIC,
    BaselineStrategy,
    comparison_note,
    cost_of,
    efficiency_score,
    latency_of,
    quality_of,
    select_best,
)
from domain.evaluation.types import (
    BaselineSelection,
    EvalQuery,
    EvalSet,
    Experiment,
    ExperimentResult,
    RunResult,
    RunStatus,
)
from services.base import BaseService
from services.budget_service import BudgetService
from storage.base import BaseOptimizerStore
from utils.batch_processor import BatchProcessor

logger = logging.getLogger(__name__)


def validate_baseline_metric(metric: str) -> str:
    if metric not in BASELINE_METRICS:
        raise InputError(
            f"Invalid baseline_metric: {metric}. Expected one of {', '.join(BASELINE_METRICS)}"
        )
    return metric


def validate_strategy(strategy: Union[BaselineStrategy, str]) -> BaselineStrategy:
    try:
        return BaselineStrategy(strategy)
    except ValueError:
        raise InputError(
            f"Invalid baseline_strategy: {strategy}. Expected one of {', '.join(s.value for s in BaselineStrategy)}"
        )


def experiment_result_from_run(experiment: Experiment, run: RunResult, metric: str) -> ExperimentResult:
    if run.status != RunStatus.COMPLETED:
        return ExperimentResult(
            experiment_id=experiment.id,
            experiment_name=experiment.name,
            run_id=run.run_id,
            status="failed",
            cost_metrics=run.cost_metrics,
            latency_stats=run.latency_stats,
            error=run.error_message,
        )

    result = ExperimentResult(
        experiment_id=experiment.id,
        experiment_name=experiment.name,
        run_id=run.run_id,
        status="completed",
        metrics=run.metrics,
        cost_metrics=run.cost_metrics,
        latency_stats=run.latency_stats,
    )
    result.efficiency_score = efficiency_score(quality_of(result, metric), cost_of(result), latency_of(result))
    return result


def fit_to_budget(experiments: List[Experiment], num_queries: int, max_cost_usd: float) -> List[Experiment]:
    """Keep experiments, in order, while their estimated evaluation cost fits `max_cost_usd`"""
    selected = []
    total = 0.0
    for experiment in experiments:
        cost = estimate_evaluation_cost(experiment.embedding_model, num_queries)
        if total + cost > max_cost_usd:
            continue
        selected.append(experiment)
        total += cost
    return selected


def sweep_summary(
    baseline: Optional[BaselineSelection],
    metric: str,
    completed: int = 0,
    total: int = 0,
    baseline_requested: bool = True
) -> str:
    if completed == 0:
        return "No successful evaluations completed"
    if not baseline_requested:
        return f"Evaluated {completed}/{total} experiments; baseline selection not requested"
    if baseline is None:
        return f"Evaluated {completed}/{total} experiments; no baseline could be selected"
    summary = (
        f"Best RAG config found: {baseline.experiment_name} "
        f"({BASELINE_METRICS[metric]}: {baseline.quality_score:.4f}, "
        f"Cost: ${baseline.cost_usd:.6f}, "
        f"Latency: {baseline.avg_latency_ms:.0f}ms)."
    )
    if baseline.comparison_note:
        summary += f" {baseline.comparison_note}"
    return summary


class EvaluationService(BaseService):
    """Orchestrates evaluation runs over experiments of a project"""

    def __init__(
        self,
        store: BaseOptimizerStore,
        evaluator: RunEvaluator,
        reporter: EvaluationReporter = None,
        max_concurrent_runs: int = None,
        budget_service: Optional[BudgetService] = None,
        cancellations: Optional[CancellationRegistry] = None
    ):
        self.store = store
        self.evaluator = evaluator
        self.reporter = reporter or EvaluationReporter()
        self.pool = BatchProcessor(
            max_concurrent=max_concurrent_runs or settings.orchestrator_max_concurrent_runs
        )
        self.budget_service = budget_service
        self.cancellations = cancellations

    async def _preflight(
        self,
        project_id: str,
        experiments: List[Experiment],
        num_queries: int,
        can_downgrade: bool
    ) -> Optional[BudgetCheckResult]:
        """
        Reserve the estimated cost of evaluating `experiments`.

        Raises:
            BudgetExceeded: the decision is abort, or a downgrade the caller cannot apply
        """
        if self.budget_service is None:
            return None

        estimate = sum(estimate_evaluation_cost(e.embedding_model, num_queries) for e in experiments)
        check = await self.budget_service.check_budget(
            project_id,
            OperationType.EVALUATION,
            estimated_cost_usd=estimate,
            reserve=True,
        )
        decision = check.decision
        if decision.action == DecisionAction.ABORT:
            raise BudgetExceeded(decision.reason, decision.to_log_record())
        if decision.action == DecisionAction.DOWNGRADE and not can_downgrade:
            await self.budget_service.release_reservation(check.reservation_id)
            raise BudgetExceeded(
                f"Evaluating {experiments[0].name} would exceed the monthly budget "
                f"and its configuration is fixed. Remaining: ${check.budget_status.remaining_budget_usd:.4f}",
                decision.to_log_record(),
            )
        return check

    async def _settle(self, check: Optional[BudgetCheckResult], succeeded: bool) -> None:
        if check is None or check.reservation_id is None:
            return
        if succeeded:
            await self.budget_service.commit_reservation(check.reservation_id)
        else:
            await self.budget_service.release_reservation(check.reservation_id)

    async def _load_experiment(self, experiment_id: str) -> Experiment:
        if not experiment_id:
            raise InputError("experiment_id is required")
        record = await self.store.get_experiment(experiment_id)
        if record is None:
            raise NotFoundError(f"Experiment {experiment_id} not found")
        return Experiment(**record)

    async def _load_eval_set(self, eval_set_id: str, project_id: str) -> tuple:
        if not eval_set_id:
            raise InputError("eval_set_id is required")
        record = await self.store.get_eval_set(eval_set_id)
        if record is None:
            raise NotFoundError(f"Evaluation set {eval_set_id} not found")
        if record["project_id"] != project_id:
            raise InputError(f"Evaluation set {eval_set_id} does not belong to project {project_id}")

        eval_set = EvalSet(**record)
        queries = [EvalQuery(**q) for q in await self.store.list_eval_queries(eval_set_id)]
        if not queries:
            raise InputError(f"Evaluation set {eval_set_id} has no queries")
        return eval_set, queries

    async def run_evaluation(
        self,
        experiment_id: str,
        eval_set_id: str,
        cancellation: Optional[CancellationToken] = None,
        enforce_budget: bool = True
    ) -> RunResult:
        """
        Evaluate one experiment against one eval set.

        Raises:
            InputError: missing ids, eval set of another project, or no queries
            NotFoundError: unknown experiment or eval set
            BudgetExceeded: the run does not fit the project's budget
        """
        experiment = await self._load_experiment(experiment_id)
        eval_set, queries = await self._load_eval_set(eval_set_id, experiment.project_id)

        check = None
        if enforce_budget:
            check = await self._preflight(experiment.project_id, [experiment], len(queries), can_downgrade=False)

        succeeded = False
        try:
            run = await self.evaluator.evaluate(experiment, eval_set, queries, cancellation)
            succeeded = True
            return run
        finally:
            await self._settle(check, succeeded)

    async def _run_experiment(
        self,
        experiment: Experiment,
        eval_set: EvalSet,
        queries: List[EvalQuery],
        metric: str,
        cancellation: Optional[CancellationToken]
    ) -> ExperimentResult:
        if cancellation is not None and cancellation.cancelled:
            return ExperimentResult(
                experiment_id=experiment.id,
                experiment_name=experiment.name,
                status="skipped",
                error=CANCELLED_MESSAGE,
            )

        logger.info(f"Running experiment: {experiment.name}")
        try:
            run = await self.evaluator.evaluate(experiment, eval_set, queries, cancellation)
        except Exception as e:
            logger.error(f"Error running experiment {experiment.name}: {e}", exc_info=True)
            return ExperimentResult(
                experiment_id=experiment.id,
                experiment_name=experiment.name,
                status="failed",
                error=str(e),
            )
        return experiment_result_from_run(experiment, run, metric)

    async def run_project_evaluations(
        self,
        project_id: str,
        eval_set_id: str,
        experiment_ids: Optional[List[str]] = None,
        auto_generated_only: bool = False,
        select_baseline: bool = True,
        baseline_strategy: Union[BaselineStrategy, str] = BaselineStrategy.QUALITY_ONLY,
        baseline_metric: str = DEFAULT_BASELINE_METRIC,
        cancellation: Optional[CancellationToken] = None,
        max_cost_usd: Optional[float] = None,
        enforce_budget: bool = True
    ) -> Dict[str, Any]:
        """
        Evaluate the active experiments of a project and optionally select a baseline.

        Args:
            project_id: Project whose experiments are evaluated
            eval_set_id: Eval set of the same project
            experiment_ids: Restrict to these experiments (intersected with the active ones)
            auto_generated_only: Only experiments created by the generator
            select_baseline: Persist the winner as the project's baseline
            baseline_strategy: How the winner is chosen
            baseline_metric: Aggregate metric used as quality
            cancellation: Optional token; experiments not yet started are skipped.
                Without one, the sweep registers its own so it can be cancelled by project id.
            max_cost_usd: Only evaluate experiments, in order, while their estimated cost fits
            enforce_budget: Run a pre-flight budget check (needs a budget service)

        Returns:
            Sweep result dictionary

        Raises:
            BudgetExceeded: the budget decision is abort, or no experiment fits a downgrade
        """
        strategy = validate_strategy(baseline_strategy)
        metric = validate_baseline_metric(baseline_metric)
        if not project_id:
            raise InputError("project_id is required")
        if max_cost_usd is not None and max_cost_usd < 0:
            raise InputError("max_cost_usd must not be negative")
        if await self.store.get_project(project_id) is None:
            raise NotFoundError(f"Project {project_id} not found")
        eval_set, queries = await self._load_eval_set(eval_set_id, project_id)

        if cancellation is None and self.cancellations is not None:
            tracker = self.cancellations.track(project_id)
        else:
            tracker = nullcontext(cancellation)

        with tracker as token:
            return await self._sweep(
                project_id,
                eval_set,
                queries,
                experiment_ids=experiment_ids,
                auto_generated_only=auto_generated_only,
                select_baseline=select_baseline,
                strategy=strategy,
                metric=metric,
                cancellation=token,
                max_cost_usd=max_cost_usd,
                enforce_budget=enforce_budget,
            )

    async def _sweep(
        self,
        project_id: str,
        eval_set: EvalSet,
        queries: List[EvalQuery],
        experiment_ids: Optional[List[str]],
        auto_generated_only: bool,
        select_baseline: bool,
        strategy: BaselineStrategy,
        metric: str,
        cancellation: Optional[CancellationToken],
        max_cost_usd: Optional[float],
        enforce_budget: bool
    ) -> Dict[str, Any]:
        started = time.perf_counter()
        logger.info(
            f"Starting project evaluations for project: {project_id}, eval_set: {eval_set.id}, "
            f"strategy: {strategy.value}"
        )

        records = await self.store.list_experiments(
            project_id=project_id,
            experiment_ids=experiment_ids or None,
            auto_generated_only=auto_generated_only,
        )
        experiments = [Experiment(**record) for record in records]
        listed = len(experiments)
        if max_cost_usd is not None:
            experiments = fit_to_budget(experiments, len(queries), max_cost_usd)

        base_response = {
            "success": True,
            "project_id": project_id,
            "eval_set_id": eval_set.id,
            "baseline_strategy": strategy.value,
            "baseline_metric": metric,
        }
        if not experiments:
            return {
                **base_response,
                "message": "No experiments to run",
                "total_experiments": 0,
                "completed": 0,
                "failed": 0,
                "skipped": 0,
                "over_budget": listed,
                "total_cost_usd": 0.0,
                "results": [],
                "baseline": None,
                "baseline_updated": False,
                "summary": "No successful evaluations completed",
                "duration_ms": (time.perf_counter() - started) * 1000,
            }

        check = None
        if enforce_budget:
            check = await self._preflight(project_id, experiments, len(queries), can_downgrade=True)
            if check is not None and check.decision.action == DecisionAction.DOWNGRADE:
                experiments = fit_to_budget(experiments, len(queries), check.decision.committed_cost_usd)
                if not experiments:
                    await self._settle(check, succeeded=False)
                    raise BudgetExceeded(
                        f"No experiment fits the remaining budget of "
                        f"${check.budget_status.remaining_budget_usd:.4f}",
                        check.decision.to_log_record(),
                    )
        over_budget = listed - len(experiments)
        if over_budget:
            logger.warning(f"{over_budget} experiments left out to stay within budget")

        logger.info(f"Running {len(experiments)} experiments")
        succeeded = False
        try:
            results = await self.pool.process_batch(
                experiments,
                lambda experiment: self._run_experiment(experiment, eval_set, queries, metric, cancellation),
            )
            succeeded = True
        finally:
            await self._settle(check, succeeded)

        baseline = None
        baseline_updated = False
        if select_baseline:
            baseline, baseline_updated = await self._select_baseline(project_id, results, strategy, metric)

        completed = sum(1 for r in results if r.status == "completed")
        failed = sum(1 for r in results if r.status == "failed")
        skipped = sum(1 for r in results if r.status == "skipped")
        total_cost = sum(r.cost_metrics.estimated_usd for r in results if r.cost_metrics)
        duration_ms = (time.perf_counter() - started) * 1000

        logger.info(
            f"Project evaluations completed in {duration_ms:.0f}ms: "
            f"{completed} succeeded, {failed} failed, {skipped} skipped"
        )

        return {
            **base_response,
            "total_experiments": len(experiments),
            "completed": completed,
            "failed": failed,
            "skipped": skipped,
            "over_budget": over_budget,
            "total_cost_usd": total_cost,
            "results": [r.model_dump() for r in results],
            "baseline": baseline.model_dump() if baseline else None,
            "baseline_updated": baseline_updated,
            "summary": sweep_summary(baseline, metric, completed, len(experiments), select_baseline),
            "duration_ms": duration_ms,
        }

    async def _select_baseline(
        self,
        project_id: str,
        results: List[ExperimentResult],
        strategy: BaselineStrategy,
        metric: str
    ) -> tuple:
        winner = select_best(results, strategy, metric)
        if winner is None:
            return None, False
        best_quality = select_best(results, BaselineStrategy.QUALITY_ONLY, metric)

        logger.info(f"Setting baseline ({strategy.value}): {winner.experiment_name}")
        try:
            await self.store.set_baseline(project_id, winner.experiment_id, strategy.value)
        except OptimizerException as e:
            logger.error(f"Failed to set baseline for project {project_id}: {e}")
            return None, False

        selection = BaselineSelection(
            experiment_id=winner.experiment_id,
            experiment_name=winner.experiment_name,
            strategy=strategy.value,
            quality_score=quality_of(winner, metric),
            cost_usd=cost_of(winner),
            avg_latency_ms=latency_of(winner),
            efficiency_score=winner.efficiency_score or 0.0,
            comparison_note=comparison_note(winner, best_quality, metric),
        )
        return selection, True

    async def compare_experiments(
        self,
        experiment_ids: Optional[List[str]] = None,
        project_id: Optional[str] = None,
        metric: str = DEFAULT_BASELINE_METRIC,
        eval_set_id: Optional[str] = None,
        include_cost_analysis: bool = True
    ) -> Dict[str, Any]:
        """Rank active experiments by `metric` over their best completed run"""
        if not experiment_ids and not project_id:
            raise InputError("Either experiment_ids or project_id is required")
        metric = validate_baseline_metric(metric)

        experiments = await self.store.list_experiments(
            project_id=None if experiment_ids else project_id,
            experiment_ids=experiment_ids or None,
        )
        logger.info(f"Comparing {len(experiments)} experiments by {metric}")

        summaries = []
        for experiment in experiments:
            runs = await self.store.list_runs(
                experiment["id"], status=RunStatus.COMPLETED.value, eval_set_id=eval_set_id
            )
            summaries.append(experiment_summary(experiment, runs, metric))

        rankings = rank_experiments(summaries, metric)
        winner = None
        if rankings:
            winner = {
                "experiment_id": rankings[0]["experiment_id"],
                "experiment_name": rankings[0]["experiment_name"],
                "metric_name": metric,
                "metric_value": rankings[0]["value"],
            }

        return {
            "success": True,
            "experiments": summaries,
            "winner": winner,
            "comparison_details": {"metric_name": metric, "rankings": rankings},
            "cost_analysis": cost_analysis(summaries, metric) if include_cost_analysis else None,
        }

    async def get_run(self, run_id: str) -> Dict[str, Any]:
        run = await self.store.get_run(run_id)
        if run is None:
            raise NotFoundError(f"Run {run_id} not found")
        return run

    async def export_run(self, run_id: str) -> Dict[str, str]:
        """Write a stored run to the results directory as JSON and CSV"""
        run = await self.get_run(run_id)
        paths = self.reporter.export_run(run)
        return {fmt: str(path) for fmt, path in paths.items()}
