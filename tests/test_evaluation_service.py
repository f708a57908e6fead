"""Tests for EvaluationService: single runs, sweeps, comparison and export.

Two experiments share the fake providers from conftest:
- small_k3 (top_k 3) scores MRR 1, 1/2, 0 -> mean 0.5
- small_k1 (top_k 1) scores MRR 1, 0, 0 -> mean 1/3
"""

import asyncio
import json
from pathlib import Path

import pytest

from core.exceptions import BudgetExceeded, InputError, NotFoundError
from domain.budget.cost_estimator import embedding_cost
from domain.evaluation.cancellation import CancellationToken
from domain.evaluation.evaluator import RunEvaluator
from domain.evaluation.types import RunStatus
from domain.rag.retrieval.ann_retriever import ANNRetriever
from services.evaluation_service import EvaluationService

from conftest import EVAL_QUERIES, FIXED_NOW, FakeEmbeddingClient


@pytest.fixture
async def k1_experiment(store, project):
    created = await store.create_experiments(project["id"], [{
        "name": "small_k1",
        "embedding_model": "text-embedding-3-small",
        "retrieval_config": {"top_k": 1, "similarity_threshold": 0.5, "filters": {}},
    }])
    return created[0]


class TestRunEvaluation:
    """Tests for EvaluationService.run_evaluation."""

    async def test_single_run(self, evaluation_service, experiment, eval_set) -> None:
        run = await evaluation_service.run_evaluation(experiment["id"], eval_set["id"])
        assert run.status == RunStatus.COMPLETED
        assert run.metrics.mean_mrr == pytest.approx(0.5)

    async def test_unknown_ids(self, evaluation_service, experiment, eval_set) -> None:
        with pytest.raises(NotFoundError):
            await evaluation_service.run_evaluation("missing", eval_set["id"])
        with pytest.raises(NotFoundError):
            await evaluation_service.run_evaluation(experiment["id"], "missing")
        with pytest.raises(InputError):
            await evaluation_service.run_evaluation(experiment["id"], "")

    async def test_eval_set_of_another_project(self, evaluation_service, store, experiment) -> None:
        other = await store.create_project("other")
        foreign = await store.create_eval_set(other["id"], "foreign", EVAL_QUERIES)
        with pytest.raises(InputError):
            await evaluation_service.run_evaluation(experiment["id"], foreign["id"])


class TestRunProjectEvaluations:
    """Tests for EvaluationService.run_project_evaluations."""

    async def test_sweep_selects_baseline(
        self, evaluation_service, store, project, eval_set, experiment, k1_experiment
    ) -> None:
        result = await evaluation_service.run_project_evaluations(project["id"], eval_set["id"])

        assert result["success"]
        assert result["total_experiments"] == 2
        assert result["completed"] == 2
        assert result["failed"] == 0
        assert result["skipped"] == 0
        assert result["baseline_strategy"] == "quality_only"
        assert result["total_cost_usd"] == pytest.approx(6 * embedding_cost(10, "text-embedding-3-small"))

        baseline = result["baseline"]
        assert baseline["experiment_id"] == experiment["id"]
        assert baseline["quality_score"] == pytest.approx(0.5)
        assert baseline["comparison_note"] == "This is also the highest quality configuration."
        assert result["baseline_updated"]
        assert result["summary"].startswith("Best RAG config found: small_k3 (MRR: 0.5000, Cost: $")

        stored = await store.get_experiment(experiment["id"])
        assert stored["is_baseline"]
        assert stored["baseline_strategy"] == "quality_only"
        assert (await store.get_project(project["id"]))["baseline_experiment_id"] == experiment["id"]

        by_id = {r["experiment_id"]: r for r in result["results"]}
        assert by_id[k1_experiment["id"]]["metrics"]["mean_mrr"] == pytest.approx(1 / 3)
        assert by_id[k1_experiment["id"]]["efficiency_score"] > 0

    async def test_alternate_metric_label(self, evaluation_service, project, eval_set, experiment) -> None:
        result = await evaluation_service.run_project_evaluations(
            project["id"], eval_set["id"], baseline_metric="mean_hit_rate"
        )
        assert "(Hit rate: 0.6667" in result["summary"]

    async def test_without_baseline_selection(
        self, evaluation_service, store, project, eval_set, experiment
    ) -> None:
        result = await evaluation_service.run_project_evaluations(
            project["id"], eval_set["id"], select_baseline=False
        )
        assert result["completed"] == 1
        assert result["baseline"] is None
        assert not result["baseline_updated"]
        assert result["summary"] == "Evaluated 1/1 experiments; baseline selection not requested"
        assert (await store.get_project(project["id"]))["baseline_experiment_id"] is None

    async def test_explicit_experiment_ids(
        self, evaluation_service, project, eval_set, experiment, k1_experiment
    ) -> None:
        result = await evaluation_service.run_project_evaluations(
            project["id"], eval_set["id"], experiment_ids=[k1_experiment["id"]]
        )
        assert result["total_experiments"] == 1
        assert result["baseline"]["experiment_id"] == k1_experiment["id"]

    async def test_no_experiments(self, evaluation_service, project, eval_set, experiment) -> None:
        result = await evaluation_service.run_project_evaluations(
            project["id"], eval_set["id"], auto_generated_only=True
        )
        assert result["success"]
        assert result["message"] == "No experiments to run"
        assert result["total_experiments"] == 0
        assert result["baseline"] is None

    async def test_all_runs_failed(self, store, project, eval_set, experiment, vector_store, reporter) -> None:
        client = FakeEmbeddingClient(fail_on={q["query"] for q in EVAL_QUERIES})
        service = EvaluationService(store, RunEvaluator(store, client, ANNRetriever(vector_store)), reporter)

        result = await service.run_project_evaluations(project["id"], eval_set["id"])
        assert result["failed"] == 1
        assert result["results"][0]["status"] == "failed"
        assert result["results"][0]["error"]
        assert result["baseline"] is None
        assert result["summary"] == "No successful evaluations completed"

    async def test_cancelled_sweep_skips_experiments(
        self, evaluation_service, store, project, eval_set, experiment, k1_experiment
    ) -> None:
        token = CancellationToken()
        token.cancel()

        result = await evaluation_service.run_project_evaluations(
            project["id"], eval_set["id"], cancellation=token
        )
        assert result["skipped"] == 2
        assert all(r["error"] == "cancelled" for r in result["results"])
        assert result["total_cost_usd"] == 0.0
        assert await store.list_runs(experiment["id"]) == []

    async def test_invalid_arguments(self, evaluation_service, store, project, eval_set) -> None:
        with pytest.raises(InputError):
            await evaluation_service.run_project_evaluations(project["id"], eval_set["id"], baseline_strategy="cheapest")
        with pytest.raises(InputError):
            await evaluation_service.run_project_evaluations(project["id"], eval_set["id"], baseline_metric="mean_f1")
        with pytest.raises(NotFoundError):
            await evaluation_service.run_project_evaluations("missing", eval_set["id"])

        other = await store.create_project("other")
        with pytest.raises(InputError):
            await evaluation_service.run_project_evaluations(other["id"], eval_set["id"])


async def budget_project(store, mode: str, spent: float):
    """Project with two small-model experiments; each costs an estimated 3e-6 on the 3 queries"""
    project = await store.create_project(f"{mode}-project", monthly_budget_usd=10.0, budget_enforcement_mode=mode)
    eval_set = await store.create_eval_set(project["id"], "golden", EVAL_QUERIES)
    experiments = await store.create_experiments(project["id"], [
        {
            "name": name,
            "embedding_model": "text-embedding-3-small",
            "retrieval_config": {"top_k": top_k, "similarity_threshold": 0.5, "filters": {}},
        }
        for name, top_k in [("small_k3", 3), ("small_k1", 1)]
    ])
    await store.log_cost(project["id"], "query", spent, created_at=FIXED_NOW)
    return project, eval_set, experiments


@pytest.fixture
def budgeted_service(store, evaluator, reporter, budget_service):
    return EvaluationService(store, evaluator, reporter, budget_service=budget_service)


class TestBudgetEnforcement:
    """Pre-flight budget checks of single runs and sweeps."""

    async def test_abort_blocks_single_run(self, budgeted_service, store) -> None:
        project, eval_set, experiments = await budget_project(store, "abort", spent=10.0)

        with pytest.raises(BudgetExceeded, match="Operation aborted") as excinfo:
            await budgeted_service.run_evaluation(experiments[0]["id"], eval_set["id"])

        assert excinfo.value.decision["decision_type"] == "abort"
        assert await store.list_runs(experiments[0]["id"]) == []
        assert await store.get_reserved_total(project["id"]) == 0.0
        assert len(await store.list_budget_decisions(project["id"])) == 1

    async def test_abort_blocks_sweep(self, budgeted_service, store) -> None:
        project, eval_set, experiments = await budget_project(store, "abort", spent=10.0)

        with pytest.raises(BudgetExceeded):
            await budgeted_service.run_project_evaluations(project["id"], eval_set["id"])
        assert all([await store.list_runs(e["id"]) == [] for e in experiments])

    async def test_fixed_configuration_is_not_downgraded(self, budgeted_service, store) -> None:
        project, eval_set, experiments = await budget_project(store, "auto_downgrade", spent=10.0 - 1e-6)

        with pytest.raises(BudgetExceeded, match="configuration is fixed") as excinfo:
            await budgeted_service.run_evaluation(experiments[0]["id"], eval_set["id"])

        assert excinfo.value.decision["decision_type"] == "downgrade"
        assert await store.get_reserved_total(project["id"]) == 0.0

    async def test_downgraded_sweep_without_fitting_experiment(self, budgeted_service, store) -> None:
        """The downgrade allows 15% of 6e-6; a single experiment needs 3e-6."""
        project, eval_set, experiments = await budget_project(store, "auto_downgrade", spent=10.0 - 1e-6)

        with pytest.raises(BudgetExceeded, match="No experiment fits"):
            await budgeted_service.run_project_evaluations(project["id"], eval_set["id"])
        assert await store.get_reserved_total(project["id"]) == 0.0

    async def test_within_budget(self, budgeted_service, store, project, experiment, eval_set) -> None:
        run = await budgeted_service.run_evaluation(experiment["id"], eval_set["id"])

        assert run.status == RunStatus.COMPLETED
        assert await store.get_reserved_total(project["id"]) == 0.0
        assert await store.list_budget_decisions(project["id"]) == []

    async def test_budget_check_can_be_skipped(self, budgeted_service, store) -> None:
        project, eval_set, experiments = await budget_project(store, "abort", spent=10.0)

        run = await budgeted_service.run_evaluation(experiments[0]["id"], eval_set["id"], enforce_budget=False)
        assert run.status == RunStatus.COMPLETED

    async def test_max_cost_limits_sweep(self, evaluation_service, project, eval_set, experiment, k1_experiment) -> None:
        result = await evaluation_service.run_project_evaluations(
            project["id"], eval_set["id"], max_cost_usd=4e-6
        )
        assert result["total_experiments"] == 1
        assert result["over_budget"] == 1
        assert result["results"][0]["experiment_id"] == experiment["id"]

        with pytest.raises(InputError):
            await evaluation_service.run_project_evaluations(project["id"], eval_set["id"], max_cost_usd=-1.0)


class TestSweepCancellation:
    """Sweeps started without a token register one under the project id."""

    async def test_cancel_by_project_id(
        self, store, retriever, reporter, cancellations, project, eval_set, experiment, k1_experiment
    ) -> None:
        client = FakeEmbeddingClient(delay_by_model={"text-embedding-3-small": 0.05})
        service = EvaluationService(
            store,
            RunEvaluator(store, client, retriever, max_concurrent_queries=1),
            reporter,
            max_concurrent_runs=1,
            cancellations=cancellations,
        )

        task = asyncio.create_task(service.run_project_evaluations(project["id"], eval_set["id"]))
        while not client.calls:
            await asyncio.sleep(0.005)
        assert cancellations.cancel(project["id"])
        result = await task

        assert result["completed"] == 0
        assert result["failed"] == 1
        assert result["skipped"] == 1
        assert result["summary"] == "No successful evaluations completed"
        assert len(client.calls) == 1
        assert cancellations.active() == []

    async def test_concurrent_sweep_of_same_project(self, evaluation_service, cancellations, project, eval_set) -> None:
        with cancellations.track(project["id"]):
            with pytest.raises(InputError, match="already running"):
                await evaluation_service.run_project_evaluations(project["id"], eval_set["id"])


class TestCompareExperiments:
    """Tests for EvaluationService.compare_experiments."""

    async def test_rankings_and_cost_analysis(
        self, evaluation_service, project, eval_set, experiment, k1_experiment
    ) -> None:
        await evaluation_service.run_project_evaluations(project["id"], eval_set["id"], select_baseline=False)
        result = await evaluation_service.compare_experiments(project_id=project["id"])

        rankings = result["comparison_details"]["rankings"]
        assert [r["experiment_id"] for r in rankings] == [experiment["id"], k1_experiment["id"]]
        assert rankings[1]["difference_from_best"] == pytest.approx(0.5 - 1 / 3)
        assert rankings[1]["percentage_of_best"] == pytest.approx(200 / 3)
        assert result["winner"]["experiment_name"] == "small_k3"

        analysis = result["cost_analysis"]
        assert analysis["best_quality"]["experiment_id"] == experiment["id"]
        notes = {e["experiment_name"]: e["cost_vs_best_quality"] for e in analysis["all_experiments"]}
        assert notes["small_k3"] == "Best quality configuration"
        assert notes["small_k1"].startswith("33.3% lower quality")

    async def test_experiment_without_runs(self, evaluation_service, experiment) -> None:
        result = await evaluation_service.compare_experiments(
            experiment_ids=[experiment["id"]], include_cost_analysis=False
        )
        assert result["experiments"][0]["run_count"] == 0
        assert result["experiments"][0]["best_run"] is None
        assert result["winner"] is None
        assert result["cost_analysis"] is None

    async def test_requires_ids_or_project(self, evaluation_service) -> None:
        with pytest.raises(InputError):
            await evaluation_service.compare_experiments()


class TestRunExport:
    """Tests for get_run and export_run."""

    async def test_export(self, evaluation_service, experiment, eval_set) -> None:
        run = await evaluation_service.run_evaluation(experiment["id"], eval_set["id"])
        paths = await evaluation_service.export_run(run.run_id)

        exported = json.loads(Path(paths["json"]).read_text())
        assert exported["id"] == run.run_id
        lines = Path(paths["csv"]).read_text().strip().splitlines()
        assert len(lines) == 1 + len(EVAL_QUERIES)

    async def test_missing_run(self, evaluation_service) -> None:
        with pytest.raises(NotFoundError):
            await evaluation_service.get_run("missing")
