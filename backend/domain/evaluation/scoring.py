"""
Baseline scoring: efficiency score and strategy-based selection
"""

from enum import Enum
from typing import Callable, Dict, List, Optional

from domain.evaluation.types import ExperimentResult

MIN_COST_USD = 0.000001
MIN_LATENCY_MS = 1.0
DEFAULT_BASELINE_METRIC = "mean_mrr"

# Aggregate metrics a baseline can be selected on, with their display labels
BASELINE_METRICS = {
    "mean_mrr": "MRR",
    "mean_ndcg": "NDCG",
    "mean_recall_at_k": "Recall@k",
    "mean_precision_at_k": "Precision@k",
    "mean_hit_rate": "Hit rate",
}


class BaselineStrategy(str, Enum):
    QUALITY_ONLY = "quality_only"
    COST_AWARE = "cost_aware"
    LATENCY_AWARE = "latency_aware"
    BALANCED = "balanced"


def efficiency_score(quality: float, cost_usd: float, avg_latency_ms: float) -> float:
    """
    Composite score balancing quality against cost and latency. Higher is better.

    Cost is floored at 1e-6 USD and latency at 1 ms so the score stays finite.
    """
    safe_cost = max(cost_usd, MIN_COST_USD)
    latency_seconds = max(avg_latency_ms, MIN_LATENCY_MS) / 1000
    return quality / (safe_cost * latency_seconds)


def quality_of(result: ExperimentResult, metric: str = DEFAULT_BASELINE_METRIC) -> float:
    if result.metrics is None:
        return 0.0
    return float(getattr(result.metrics, metric, 0.0) or 0.0)


def cost_of(result: ExperimentResult) -> float:
    return result.cost_metrics.estimated_usd if result.cost_metrics else 0.0


def latency_of(result: ExperimentResult) -> float:
    return result.latency_stats.avg_query_latency_ms if result.latency_stats else 0.0


def _score_quality(result: ExperimentResult, metric: str) -> float:
    return quality_of(result, metric)


def _score_cost(result: ExperimentResult, metric: str) -> float:
    return quality_of(result, metric) / max(cost_of(result), MIN_COST_USD)


def _score_latency(result: ExperimentResult, metric: str) -> float:
    return quality_of(result, metric) / max(latency_of(result), MIN_LATENCY_MS)


def _score_balanced(result: ExperimentResult, metric: str) -> float:
    return efficiency_score(quality_of(result, metric), cost_of(result), latency_of(result))


ScoringFn = Callable[[ExperimentResult, str], float]

STRATEGY_SCORERS: Dict[BaselineStrategy, ScoringFn] = {
    BaselineStrategy.QUALITY_ONLY: _score_quality,
    BaselineStrategy.COST_AWARE: _score_cost,
    BaselineStrategy.LATENCY_AWARE: _score_latency,
    BaselineStrategy.BALANCED: _score_balanced,
}

# Every strategy must have a scorer
_missing_scorers = set(BaselineStrategy) - set(STRATEGY_SCORERS)
if _missing_scorers:
    raise RuntimeError(f"Baseline strategies without a scorer: {sorted(s.value for s in _missing_scorers)}")


def scorer_for(strategy: BaselineStrategy) -> ScoringFn:
    return STRATEGY_SCORERS[BaselineStrategy(strategy)]


def select_best(
    results: List[ExperimentResult],
    strategy: BaselineStrategy,
    metric: str = DEFAULT_BASELINE_METRIC
) -> Optional[ExperimentResult]:
    """
    Pick the best completed result under a strategy.

    Ties keep the first result seen. Returns None when nothing completed.
    """
    score = scorer_for(strategy)
    best = None
    best_score = None
    for result in results:
        if result.status != "completed" or result.metrics is None:
            continue
        current = score(result, metric)
        if best is None or current > best_score:
            best, best_score = result, current
    return best


def comparison_note(
    selected: ExperimentResult,
    best_quality: ExperimentResult,
    metric: str = DEFAULT_BASELINE_METRIC
) -> str:
    """Describe the selected baseline relative to the highest quality result"""
    if selected.experiment_id == best_quality.experiment_id:
        return "This is also the highest quality configuration."

    parts = []

    top_quality = quality_of(best_quality, metric)
    if top_quality > 0:
        quality_diff = (top_quality - quality_of(selected, metric)) / top_quality * 100
        if quality_diff > 0:
            parts.append(f"{quality_diff:.1f}% lower quality")

    top_cost = cost_of(best_quality)
    if top_cost > 0:
        savings = (top_cost - cost_of(selected)) / top_cost * 100
        if savings > 0:
            parts.append(f"{savings:.0f}% cheaper")

    top_latency = latency_of(best_quality)
    if top_latency > 0:
        reduction = (top_latency - latency_of(selected)) / top_latency * 100
        if reduction > 0:
            parts.append(f"{reduction:.0f}% faster")

    if not parts:
        return "Comparable to best quality configuration."
    return f"This config is {' and '.join(parts)}."
