"""
Cost estimation for embedding operations

Pure functions: the budget guard calls these speculatively, nothing is persisted.
"""

import math
from typing import Dict, Iterable, Optional, Union

from domain.budget.types import OperationConfig, OperationType

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"

# USD per 1M input tokens, and quality relative to the large model
EMBEDDING_COSTS: Dict[str, Dict[str, float]] = {
    "text-embedding-3-large": {"input_per_million": 0.13, "quality_score": 1.0},
    "text-embedding-3-small": {"input_per_million": 0.02, "quality_score": 0.85},
    "text-embedding-ada-002": {"input_per_million": 0.10, "quality_score": 0.80},
}

AVG_TOKENS_PER_QUERY = 50
DEFAULT_NUM_QUERIES = 10
DEFAULT_NUM_EXPERIMENTS = 1


def cost_per_million(model: Optional[str]) -> float:
    """Per-million-token rate; unknown models are billed at the default model's rate"""
    rates = EMBEDDING_COSTS.get(model or DEFAULT_EMBEDDING_MODEL)
    if rates is None:
        rates = EMBEDDING_COSTS[DEFAULT_EMBEDDING_MODEL]
    return rates["input_per_million"]


def estimate_token_count(text: str) -> int:
    """Rough token count (~4 characters per token)"""
    return math.ceil(len(text or "") / 4)


def embedding_cost(tokens: int, model: Optional[str]) -> float:
    """Actual cost of an embedding call that consumed `tokens`"""
    return (max(tokens, 0) / 1_000_000) * cost_per_million(model)


def estimate_operation_cost(
    operation_type: Union[OperationType, str],
    config: Optional[OperationConfig] = None
) -> float:
    """
    Estimate the USD cost of an operation before it runs.

    Args:
        operation_type: query, experiment_run, evaluation or optimization
        config: Embedding model, query volume and experiment count (defaults apply)

    Returns:
        Estimated cost in USD
    """
    config = config or OperationConfig()
    operation_type = OperationType(operation_type)

    num_queries = config.num_queries or DEFAULT_NUM_QUERIES
    num_experiments = config.num_experiments or DEFAULT_NUM_EXPERIMENTS
    cost_per_query = embedding_cost(AVG_TOKENS_PER_QUERY, config.embedding_model)

    if operation_type in (OperationType.EXPERIMENT_RUN, OperationType.EVALUATION):
        return cost_per_query * num_queries
    if operation_type == OperationType.OPTIMIZATION:
        return cost_per_query * num_queries * num_experiments
    return cost_per_query


def estimate_evaluation_cost(embedding_model: Optional[str], num_queries: int) -> float:
    """Estimated cost of evaluating one experiment over `num_queries` queries"""
    return estimate_operation_cost(
        OperationType.EVALUATION,
        OperationConfig(embedding_model=embedding_model, num_queries=num_queries),
    )


def most_expensive_model(models: Iterable[str]) -> str:
    return max(models, key=cost_per_million)
