"""
Evaluation metrics: Recall@k, Precision@k, MRR, nDCG@k, Hit Rate@k

All metrics are total: empty or degenerate inputs return a documented
default instead of raising.
"""

import math
from typing import Dict, Iterable, List, Optional, Sequence, Set


def recall_at_k(retrieved: Sequence[str], expected: Iterable[str], k: int) -> float:
    """
    Compute Recall@k.

    Args:
        retrieved: List of retrieved chunk IDs (ordered)
        expected: Set of relevant chunk IDs
        k: Cutoff value

    Returns:
        Recall@k score (0.0 to 1.0). 1.0 when nothing is expected.
    """
    expected = set(expected)
    if not expected:
        return 1.0
    if k <= 0:
        return 0.0

    hits = len(expected & set(retrieved[:k]))
    return hits / len(expected)


def precision_at_k(retrieved: Sequence[str], expected: Iterable[str], k: int) -> float:
    """
    Compute Precision@k over the results actually returned (at most k).

    Returns:
        Precision@k score (0.0 to 1.0). 0.0 when nothing was retrieved or k <= 0.
    """
    if k <= 0:
        return 0.0
    top_k = list(retrieved[:k])
    if not top_k:
        return 0.0

    expected = set(expected)
    hits = sum(1 for chunk_id in top_k if chunk_id in expected)
    return hits / len(top_k)


def mrr(retrieved: Sequence[str], expected: Iterable[str]) -> float:
    """
    Compute reciprocal rank of the first relevant result.

    Args:
        retrieved: List of retrieved chunk IDs (ordered)
        expected: Set of relevant chunk IDs

    Returns:
        MRR score (0.0 to 1.0)
    """
    expected = set(expected)
    if not expected:
        return 1.0

    for rank, chunk_id in enumerate(retrieved, start=1):
        if chunk_id in expected:
            return 1.0 / rank

    return 0.0


def _relevance_map(
    expected: Set[str],
    relevance_scores: Optional[Dict[str, float]]
) -> Dict[str, float]:
    # Expected ids without a graded score count as relevance 1; ids outside
    # the expected set are never relevant.
    relevance_scores = relevance_scores or {}
    return {
        chunk_id: float(relevance_scores.get(chunk_id, 1.0))
        for chunk_id in expected
    }


def dcg_at_k(retrieved: Sequence[str], relevance: Dict[str, float], k: int) -> float:
    """Discounted cumulative gain of the top k results"""
    if k <= 0:
        return 0.0
    dcg = 0.0
    for rank, chunk_id in enumerate(retrieved[:k], start=1):
        gain = relevance.get(chunk_id, 0.0)
        if gain:
            dcg += gain / math.log2(rank + 1)
    return dcg


def ndcg_at_k(
    retrieved: Sequence[str],
    expected: Iterable[str],
    k: int,
    relevance_scores: Optional[Dict[str, float]] = None
) -> float:
    """
    Compute nDCG@k (normalized Discounted Cumulative Gain) with graded relevance.

    Args:
        retrieved: List of retrieved chunk IDs (ordered)
        expected: Set of relevant chunk IDs
        k: Cutoff value
        relevance_scores: Optional graded relevance per chunk ID

    Returns:
        nDCG@k score (0.0 to 1.0). 1.0 when the ideal DCG is 0.
    """
    expected = set(expected)
    relevance = _relevance_map(expected, relevance_scores)

    ideal_ranking = sorted(expected, key=lambda chunk_id: relevance[chunk_id], reverse=True)
    idcg = dcg_at_k(ideal_ranking, relevance, k)
    if idcg <= 0:
        return 1.0

    # Duplicate ids in the retrieved list only earn gain once
    seen = set()
    deduped = []
    for chunk_id in retrieved:
        if chunk_id not in seen:
            seen.add(chunk_id)
            deduped.append(chunk_id)

    dcg = dcg_at_k(deduped, relevance, k)
    return max(0.0, min(1.0, dcg / idcg))


def hit_rate_at_k(retrieved: Sequence[str], expected: Iterable[str], k: int) -> float:
    """1.0 if any expected ID is in the top k, else 0.0 (1.0 when nothing is expected)"""
    expected = set(expected)
    if not expected:
        return 1.0
    if k <= 0:
        return 0.0
    return 1.0 if any(chunk_id in expected for chunk_id in retrieved[:k]) else 0.0


def compute_query_metrics(
    retrieved: Sequence[str],
    expected: Iterable[str],
    k: int,
    relevance_scores: Optional[Dict[str, float]] = None
) -> Dict[str, float]:
    """All five metrics for one query"""
    expected = set(expected)
    return {
        "recall_at_k": recall_at_k(retrieved, expected, k),
        "precision_at_k": precision_at_k(retrieved, expected, k),
        "mrr": mrr(retrieved, expected),
        "ndcg": ndcg_at_k(retrieved, expected, k, relevance_scores),
        "hit_rate": hit_rate_at_k(retrieved, expected, k),
    }


def percentile_95(latencies: List[float]) -> float:
    """P95 by nearest-rank on the sorted list; 0 for no samples"""
    if not latencies:
        return 0.0
    ordered = sorted(latencies)
    idx = math.floor(len(ordered) * 0.95)
    return ordered[min(idx, len(ordered) - 1)]


def mean(values: List[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)
