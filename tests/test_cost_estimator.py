"""Tests for the static embedding cost estimator."""

import pytest

from domain.budget.cost_estimator import (
    AVG_TOKENS_PER_QUERY,
    cost_per_million,
    embedding_cost,
    estimate_evaluation_cost,
    estimate_operation_cost,
    estimate_token_count,
    most_expensive_model,
)
from domain.budget.types import OperationConfig, OperationType


class TestRates:
    """Tests for the per-model rate table."""

    def test_known_models(self) -> None:
        assert cost_per_million("text-embedding-3-large") == 0.13
        assert cost_per_million("text-embedding-3-small") == 0.02
        assert cost_per_million("text-embedding-ada-002") == 0.10

    def test_unknown_model_uses_small_rate(self) -> None:
        assert cost_per_million("some-new-model") == 0.02
        assert cost_per_million(None) == 0.02

    def test_embedding_cost(self) -> None:
        """One million large-model tokens cost $0.13."""
        assert embedding_cost(1_000_000, "text-embedding-3-large") == pytest.approx(0.13)
        assert embedding_cost(0, "text-embedding-3-large") == 0.0

    def test_token_estimate(self) -> None:
        """About four characters per token, rounded up."""
        assert estimate_token_count("abcd") == 1
        assert estimate_token_count("abcde") == 2
        assert estimate_token_count("") == 0


class TestEstimateOperationCost:
    """Tests for estimate_operation_cost."""

    def test_query_is_one_query(self) -> None:
        expected = AVG_TOKENS_PER_QUERY / 1_000_000 * 0.02
        assert estimate_operation_cost(OperationType.QUERY) == pytest.approx(expected)

    def test_evaluation_defaults_to_ten_queries(self) -> None:
        per_query = AVG_TOKENS_PER_QUERY / 1_000_000 * 0.02
        assert estimate_operation_cost("evaluation") == pytest.approx(per_query * 10)
        assert estimate_operation_cost("experiment_run") == pytest.approx(per_query * 10)

    def test_optimization_scales_with_experiments(self) -> None:
        config = OperationConfig(embedding_model="text-embedding-3-large", num_queries=100, num_experiments=20)
        per_query = AVG_TOKENS_PER_QUERY / 1_000_000 * 0.13
        assert estimate_operation_cost(OperationType.OPTIMIZATION, config) == pytest.approx(per_query * 2000)

    def test_unknown_operation_type(self) -> None:
        with pytest.raises(ValueError):
            estimate_operation_cost("reindex")

    def test_evaluation_of_one_experiment(self) -> None:
        assert estimate_evaluation_cost("text-embedding-3-small", 3) == pytest.approx(3e-6)
        assert estimate_evaluation_cost("text-embedding-3-large", 3) == pytest.approx(1.95e-5)

    def test_most_expensive_model(self) -> None:
        models = ["text-embedding-3-small", "text-embedding-ada-002", "text-embedding-3-large"]
        assert most_expensive_model(models) == "text-embedding-3-large"
        assert most_expensive_model(["text-embedding-3-small"]) == "text-embedding-3-small"
