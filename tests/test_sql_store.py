"""Tests for OptimizerSQLStore on SQLite."""

from datetime import datetime, timedelta

import pytest

from core.exceptions import NotFoundError, StorageError
from core.config import settings
from services.budget_service import utc_now
from storage.optimizer_sql_store import month_bounds


class TestProjectsAndExperiments:
    """Tests for projects, experiments and baselines."""

    async def test_project_defaults(self, store) -> None:
        project = await store.create_project("plain")
        assert project["monthly_budget_usd"] == settings.default_monthly_budget_usd
        assert project["budget_enforcement_mode"] == settings.default_enforcement_mode
        assert project["preferred_baseline_strategy"] == "balanced"
        assert project["baseline_experiment_id"] is None

    async def test_experiment_names_unique_per_project(self, store, project) -> None:
        await store.create_experiments(project["id"], [{"name": "dup"}])
        with pytest.raises(StorageError):
            await store.create_experiments(project["id"], [{"name": "dup"}])
        assert await store.get_experiment_names(project["id"]) == {"dup"}

    async def test_list_experiments_keeps_explicit_order(self, store, project) -> None:
        created = await store.create_experiments(project["id"], [{"name": "a"}, {"name": "b"}, {"name": "c"}])
        ids = [created[2]["id"], created[0]["id"]]
        listed = await store.list_experiments(project_id=project["id"], experiment_ids=ids)
        assert [e["id"] for e in listed] == ids

    async def test_at_most_one_baseline(self, store, project) -> None:
        first, second = await store.create_experiments(project["id"], [{"name": "a"}, {"name": "b"}])

        await store.set_baseline(project["id"], first["id"], "quality_only")
        await store.set_baseline(project["id"], second["id"], "balanced")

        experiments = await store.list_experiments(project_id=project["id"])
        baselines = [e for e in experiments if e["is_baseline"]]
        assert [e["id"] for e in baselines] == [second["id"]]
        assert baselines[0]["baseline_strategy"] == "balanced"
        assert (await store.get_project(project["id"]))["baseline_experiment_id"] == second["id"]

    async def test_baseline_from_other_project(self, store, project) -> None:
        other = await store.create_project("other")
        (foreign,) = await store.create_experiments(other["id"], [{"name": "x"}])
        with pytest.raises(NotFoundError):
            await store.set_baseline(project["id"], foreign["id"], "balanced")


class TestEvalSetsAndRuns:
    """Tests for eval sets and the run lifecycle."""

    async def test_append_bumps_version(self, store, project, eval_set) -> None:
        updated = await store.append_eval_queries(eval_set["id"], [{"query": "new one", "expected_chunk_ids": ["c5"]}])
        assert updated["version"] == 2
        assert updated["query_count"] == 4
        queries = await store.list_eval_queries(eval_set["id"])
        assert queries[-1]["query"] == "new one"
        assert queries[0]["query"] == "what is a vector"

    async def test_run_is_append_only(self, store, experiment, eval_set) -> None:
        run = await store.create_run(experiment["id"], eval_set["id"])
        assert run["status"] == "running"

        await store.finalize_run(run["id"], "completed", summary="done")
        with pytest.raises(StorageError):
            await store.finalize_run(run["id"], "failed", error_message="again")
        assert (await store.get_run(run["id"]))["summary"] == "done"

    async def test_reconcile_abandoned_runs(self, store, experiment, eval_set) -> None:
        run = await store.create_run(experiment["id"], eval_set["id"])
        reconciled = await store.reconcile_abandoned_runs(started_before=utc_now() + timedelta(minutes=1))

        assert reconciled == 1
        stored = await store.get_run(run["id"])
        assert stored["status"] == "failed"
        assert stored["error_message"] == "Run abandoned before completion"


class TestBudgetLedger:
    """Tests for cost logs, decisions and reservations."""

    async def test_month_spending(self, store, project) -> None:
        march = datetime(2026, 3, 15)
        await store.log_cost(project["id"], "evaluation", 1.25, created_at=datetime(2026, 3, 1))
        await store.log_cost(project["id"], "query", 0.75, created_at=datetime(2026, 3, 31, 23, 59))
        await store.log_cost(project["id"], "query", 5.0, created_at=datetime(2026, 2, 28, 23, 59))
        await store.log_cost(project["id"], "query", 5.0, created_at=datetime(2026, 4, 1))

        assert await store.get_month_spending(project["id"], march) == pytest.approx(2.0)

    def test_month_bounds_december(self) -> None:
        start, end = month_bounds(datetime(2026, 12, 10))
        assert start == datetime(2026, 12, 1)
        assert end == datetime(2027, 1, 1)

    async def test_reservation_lifecycle(self, store, project) -> None:
        reservation = await store.reserve_budget(project["id"], 2.5, "optimization")
        assert await store.get_reserved_total(project["id"]) == pytest.approx(2.5)

        released = await store.release_reservation(reservation["id"])
        assert released["status"] == "released"
        assert await store.get_reserved_total(project["id"]) == 0.0

        with pytest.raises(StorageError):
            await store.commit_reservation(reservation["id"])
        with pytest.raises(NotFoundError):
            await store.commit_reservation("missing")

    async def test_decisions_filtered_by_type(self, store, project) -> None:
        base = {"reason": "r", "estimated_cost_usd": 1.0}
        await store.log_budget_decision(project["id"], "evaluation", {**base, "decision_type": "warn"})
        await store.log_budget_decision(project["id"], "evaluation", {**base, "decision_type": "downgrade"})

        downgrades = await store.list_budget_decisions(project["id"], decision_type="downgrade")
        assert len(downgrades) == 1
        assert downgrades[0]["decision_type"] == "downgrade"
