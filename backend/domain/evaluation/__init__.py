"""
Evaluation system
"""

from domain.evaluation.metrics import recall_at_k, precision_at_k, mrr, ndcg_at_k, hit_rate_at_k
from domain.evaluation.evaluator import RunEvaluator
from domain.evaluation.reporter import EvaluationReporter
from domain.evaluation.scoring import BaselineStrategy, efficiency_score, select_best
from domain.evaluation.cancellation import CancellationToken

__all__ = [
    "recall_at_k",
    "precision_at_k",
    "mrr",
    "ndcg_at_k",
    "hit_rate_at_k",
    "RunEvaluator",
    "EvaluationReporter",
    "BaselineStrategy",
    "efficiency_score",
    "select_best",
    "CancellationToken",
]
