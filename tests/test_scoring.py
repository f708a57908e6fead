"""Tests for efficiency scoring and baseline strategy selection."""

import math

import pytest

from domain.evaluation.scoring import (
    STRATEGY_SCORERS,
    BaselineStrategy,
    comparison_note,
    efficiency_score,
    select_best,
)
from domain.evaluation.types import AggregateMetrics, CostMetrics, ExperimentResult, LatencyStats


def make_result(exp_id: str, mrr: float, cost: float, latency: float, status: str = "completed") -> ExperimentResult:
    return ExperimentResult(
        experiment_id=exp_id,
        experiment_name=f"exp-{exp_id}",
        run_id=f"run-{exp_id}",
        status=status,
        metrics=AggregateMetrics(mean_mrr=mrr, mean_ndcg=mrr / 2, query_count=1, successful_queries=1),
        cost_metrics=CostMetrics(estimated_usd=cost),
        latency_stats=LatencyStats(avg_query_latency_ms=latency),
    )


@pytest.fixture
def three_runs():
    return [
        make_result("1", 0.9, 0.01, 500),
        make_result("2", 0.8, 0.001, 300),
        make_result("3", 0.95, 0.02, 800),
    ]


class TestEfficiencyScore:
    """Tests for efficiency_score."""

    def test_formula(self) -> None:
        assert efficiency_score(0.9, 0.01, 500) == pytest.approx(0.9 / (0.01 * 0.5))

    def test_zero_cost_and_latency_are_floored(self) -> None:
        """Zero cost and zero latency still give a finite positive score."""
        score = efficiency_score(0.5, 0.0, 0.0)
        assert math.isfinite(score)
        assert score > 0
        assert score == pytest.approx(0.5 / (0.000001 * 0.001))


class TestSelectBest:
    """Tests for select_best across strategies."""

    def test_quality_only(self, three_runs) -> None:
        assert select_best(three_runs, BaselineStrategy.QUALITY_ONLY).experiment_id == "3"

    def test_cost_aware(self, three_runs) -> None:
        assert select_best(three_runs, BaselineStrategy.COST_AWARE).experiment_id == "2"

    def test_latency_aware(self, three_runs) -> None:
        assert select_best(three_runs, BaselineStrategy.LATENCY_AWARE).experiment_id == "2"

    def test_balanced(self, three_runs) -> None:
        assert select_best(three_runs, "balanced").experiment_id == "2"

    def test_ignores_failed_results(self, three_runs) -> None:
        three_runs[2].status = "failed"
        assert select_best(three_runs, BaselineStrategy.QUALITY_ONLY).experiment_id == "1"

    def test_nothing_completed(self) -> None:
        failed = [make_result("1", 0.9, 0.01, 500, status="failed")]
        assert select_best(failed, BaselineStrategy.BALANCED) is None
        assert select_best([], BaselineStrategy.BALANCED) is None

    def test_tie_keeps_first(self) -> None:
        results = [make_result("a", 0.7, 0.01, 100), make_result("b", 0.7, 0.01, 100)]
        assert select_best(results, BaselineStrategy.QUALITY_ONLY).experiment_id == "a"

    def test_alternate_metric(self, three_runs) -> None:
        """Quality can be read from another aggregate metric."""
        three_runs[0].metrics.mean_ndcg = 0.99
        assert select_best(three_runs, BaselineStrategy.QUALITY_ONLY, "mean_ndcg").experiment_id == "1"

    def test_every_strategy_has_a_scorer(self) -> None:
        assert set(STRATEGY_SCORERS) == set(BaselineStrategy)


class TestComparisonNote:
    """Tests for comparison_note."""

    def test_same_experiment(self, three_runs) -> None:
        note = comparison_note(three_runs[2], three_runs[2])
        assert note == "This is also the highest quality configuration."

    def test_cheaper_and_lower_quality(self, three_runs) -> None:
        note = comparison_note(three_runs[1], three_runs[2])
        assert note.startswith("This config is ")
        assert "15.8% lower quality" in note
        assert "95% cheaper" in note
        assert "faster" in note
        assert " and " in note

    def test_no_positive_deltas(self) -> None:
        selected = make_result("a", 0.9, 0.02, 900)
        best = make_result("b", 0.9, 0.01, 500)
        assert comparison_note(selected, best) == "Comparable to best quality configuration."
