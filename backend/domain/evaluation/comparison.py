"""
Experiment comparison: rank experiments by their best completed run
"""

from typing import Any, Dict, List, Optional

from domain.evaluation.scoring import efficiency_score


def metric_value(run: Dict[str, Any], metric: str) -> float:
    return float((run.get("metrics") or {}).get(metric) or 0.0)


def best_run(runs: List[Dict[str, Any]], metric: str) -> Optional[Dict[str, Any]]:
    """Highest `metric` among runs (newest first); ties keep the newer run"""
    best = None
    best_value = None
    for run in runs:
        value = metric_value(run, metric)
        if best is None or value > best_value:
            best, best_value = run, value
    return best


def run_snapshot(run: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if run is None:
        return None
    latency = run.get("latency_stats") or {}
    return {
        "run_id": run["id"],
        "executed_at": run.get("completed_at") or run.get("started_at"),
        "metrics": run.get("metrics") or {},
        "cost_metrics": run.get("cost_metrics"),
        "avg_query_latency_ms": latency.get("avg_query_latency_ms") or 0.0,
        "p95_latency_ms": latency.get("p95_latency_ms") or 0.0,
    }


def experiment_summary(experiment: Dict[str, Any], runs: List[Dict[str, Any]], metric: str) -> Dict[str, Any]:
    return {
        "experiment_id": experiment["id"],
        "experiment_name": experiment["name"],
        "embedding_model": experiment["embedding_model"],
        "chunking_config_hash": experiment.get("chunking_config_hash"),
        "retrieval_config": experiment.get("retrieval_config") or {},
        "is_baseline": bool(experiment.get("is_baseline")),
        "auto_generated": bool(experiment.get("auto_generated")),
        "run_count": len(runs),
        "latest_run": run_snapshot(runs[0] if runs else None),
        "best_run": run_snapshot(best_run(runs, metric)),
    }


def rank_experiments(summaries: List[Dict[str, Any]], metric: str) -> List[Dict[str, Any]]:
    """Rankings over experiments that have a completed run, best first (stable)"""
    ranked = sorted(
        (s for s in summaries if s["best_run"] is not None),
        key=lambda s: (s["best_run"]["metrics"] or {}).get(metric) or 0.0,
        reverse=True,
    )
    if not ranked:
        return []

    best_value = (ranked[0]["best_run"]["metrics"] or {}).get(metric) or 0.0
    rankings = []
    for rank, summary in enumerate(ranked, start=1):
        value = (summary["best_run"]["metrics"] or {}).get(metric) or 0.0
        rankings.append({
            "rank": rank,
            "experiment_id": summary["experiment_id"],
            "experiment_name": summary["experiment_name"],
            "value": value,
            "difference_from_best": best_value - value,
            "percentage_of_best": (value / best_value) * 100 if best_value > 0 else 0.0,
            "is_baseline": summary["is_baseline"],
        })
    return rankings


def cost_vs_best_quality(entry: Dict[str, Any], best_quality: Dict[str, Any]) -> str:
    """
    Note such as "40% cheaper, 3.0% lower quality".

    Quality differences under 0.1% and latency differences within 5% are
    treated as noise.
    """
    if entry["experiment_id"] == best_quality["experiment_id"]:
        return "Best quality configuration"

    parts = []
    if best_quality["quality_score"] > 0:
        quality_diff = (best_quality["quality_score"] - entry["quality_score"]) / best_quality["quality_score"] * 100
        if quality_diff > 0.1:
            parts.append(f"{quality_diff:.1f}% lower quality")

    if best_quality["cost_usd"] > 0:
        cost_diff = (best_quality["cost_usd"] - entry["cost_usd"]) / best_quality["cost_usd"] * 100
        if cost_diff > 0:
            parts.append(f"{cost_diff:.0f}% cheaper")
        elif cost_diff < -1:
            parts.append(f"{abs(cost_diff):.0f}% more expensive")

    if best_quality["avg_latency_ms"] > 0:
        latency_diff = (
            (best_quality["avg_latency_ms"] - entry["avg_latency_ms"]) / best_quality["avg_latency_ms"] * 100
        )
        if latency_diff > 5:
            parts.append(f"{latency_diff:.0f}% faster")
        elif latency_diff < -5:
            parts.append(f"{abs(latency_diff):.0f}% slower")

    return ", ".join(parts) if parts else "Similar to best quality"


def cost_analysis(summaries: List[Dict[str, Any]], metric: str) -> Optional[Dict[str, Any]]:
    entries = []
    for summary in summaries:
        run = summary["best_run"]
        if run is None:
            continue
        quality = float((run["metrics"] or {}).get(metric) or 0.0)
        cost = float((run["cost_metrics"] or {}).get("estimated_usd") or 0.0)
        latency = float(run["avg_query_latency_ms"] or 0.0)
        entries.append({
            "experiment_id": summary["experiment_id"],
            "experiment_name": summary["experiment_name"],
            "quality_score": quality,
            "cost_usd": cost,
            "avg_latency_ms": latency,
            "p95_latency_ms": float(run["p95_latency_ms"] or 0.0),
            "efficiency_score": efficiency_score(quality, cost, latency),
            "quality_rank": 0,
            "efficiency_rank": 0,
            "cost_vs_best_quality": "",
        })
    if not entries:
        return None

    by_quality = sorted(entries, key=lambda e: e["quality_score"], reverse=True)
    by_efficiency = sorted(entries, key=lambda e: e["efficiency_score"], reverse=True)
    for rank, entry in enumerate(by_quality, start=1):
        entry["quality_rank"] = rank
    for rank, entry in enumerate(by_efficiency, start=1):
        entry["efficiency_rank"] = rank

    best_quality = by_quality[0]
    for entry in entries:
        entry["cost_vs_best_quality"] = cost_vs_best_quality(entry, best_quality)

    return {
        "most_efficient": by_efficiency[0],
        "best_quality": best_quality,
        "cheapest": min(entries, key=lambda e: e["cost_usd"]),
        "fastest": min(entries, key=lambda e: e["avg_latency_ms"]),
        "all_experiments": entries,
    }
