"""
Evaluation report generation
"""

import json
import csv
import logging
from pathlib import Path
from typing import Dict, Any, List
from core.config import settings

logger = logging.getLogger(__name__)

CSV_FIELDS = [
    "query_id",
    "query",
    "latency_ms",
    "recall_at_k",
    "precision_at_k",
    "mrr",
    "ndcg",
    "hit_rate",
    "retrieved_chunk_ids",
    "expected_chunk_ids",
]


def _csv_row(query_result: Dict[str, Any]) -> Dict[str, Any]:
    metrics = query_result.get("metrics") or {}
    return {
        "query_id": query_result.get("query_id"),
        "query": query_result.get("query"),
        "latency_ms": query_result.get("latency_ms"),
        "recall_at_k": metrics.get("recall_at_k"),
        "precision_at_k": metrics.get("precision_at_k"),
        "mrr": metrics.get("mrr"),
        "ndcg": metrics.get("ndcg"),
        "hit_rate": metrics.get("hit_rate"),
        "retrieved_chunk_ids": " ".join(query_result.get("retrieved_chunk_ids") or []),
        "expected_chunk_ids": " ".join(query_result.get("expected_chunk_ids") or []),
    }


class EvaluationReporter:
    """Write stored runs to disk"""

    def __init__(self, results_dir: Path = None):
        self.results_dir = Path(results_dir or settings.eval_results_dir)
        self.results_dir.mkdir(parents=True, exist_ok=True)

    def save_json(self, run: Dict[str, Any], filename: str) -> Path:
        """Save the full run record as JSON"""
        file_path = self.results_dir / filename
        with open(file_path, "w") as f:
            json.dump(run, f, indent=2, default=str)
        logger.info(f"Saved JSON report to {file_path}")
        return file_path

    def save_csv(self, query_results: List[Dict[str, Any]], filename: str) -> Path:
        """Save per-query results as CSV (header only when there are none)"""
        file_path = self.results_dir / filename
        with open(file_path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
            writer.writeheader()
            writer.writerows(_csv_row(r) for r in query_results)
        logger.info(f"Saved CSV report to {file_path}")
        return file_path

    def export_run(self, run: Dict[str, Any]) -> Dict[str, Path]:
        """Export a run as <run_id>.json and per-query <run_id>.csv"""
        run_id = run["id"]
        return {
            "json": self.save_json(run, f"{run_id}.json"),
            "csv": self.save_csv(run.get("query_results") or [], f"{run_id}.csv"),
        }
