"""
Single-run evaluator: one experiment against one eval set
"""

import logging
import time
from typing import List, Optional

from core.config import settings
from core.exceptions import InputError, NotFoundError, OptimizerException, PersistenceError
from domain.budget.types import OperationType
from domain.evaluation.cancellation import CancellationToken
from domain.evaluation.metrics import compute_query_metrics, mean, percentile_95
from domain.evaluation.types import (
    AggregateMetrics,
    CostMetrics,
    EvalQuery,
    EvalSet,
    Experiment,
    LatencyStats,
    QueryMetrics,
    QueryOutcome,
    QueryResult,
    RunResult,
    RunStatus,
)
from domain.rag.embedding.client import OpenAIEmbeddingClient
from domain.rag.retrieval.ann_retriever import ANNRetriever
from storage.base import BaseOptimizerStore
from utils.batch_processor import BatchProcessor

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "cancelled"


def build_run_summary(
    metrics: AggregateMetrics,
    latency: LatencyStats,
    cost: CostMetrics,
    top_k: int
) -> str:
    return (
        f"Evaluated {metrics.successful_queries}/{metrics.query_count} queries. "
        f"Mean Recall@{top_k}: {metrics.mean_recall_at_k * 100:.1f}%, "
        f"Mean MRR: {metrics.mean_mrr:.3f}, "
        f"Mean NDCG: {metrics.mean_ndcg:.3f}, "
        f"Hit Rate: {metrics.mean_hit_rate * 100:.1f}%. "
        f"Avg latency: {latency.avg_query_latency_ms:.0f}ms, "
        f"Cost: ${cost.estimated_usd:.6f}"
    )


def aggregate_outcomes(outcomes: List[QueryOutcome], model: str) -> tuple:
    """
    Merge isolated per-query outcomes into run aggregates.

    Metric means cover successful queries only. Latency covers every query whose
    search step finished. Cost covers every billed embedding call.
    """
    results = [o.result for o in outcomes if o.succeeded and o.result is not None]
    succeeded = len(results)

    metrics = AggregateMetrics(
        mean_recall_at_k=mean([r.metrics.recall_at_k for r in results]),
        mean_precision_at_k=mean([r.metrics.precision_at_k for r in results]),
        mean_mrr=mean([r.metrics.mrr for r in results]),
        mean_ndcg=mean([r.metrics.ndcg for r in results]),
        mean_hit_rate=mean([r.metrics.hit_rate for r in results]),
        query_count=len(outcomes),
        successful_queries=succeeded,
        failed_queries=len(outcomes) - succeeded,
    )

    latencies = [o.latency_ms for o in outcomes if o.latency_ms is not None]
    latency = LatencyStats(
        avg_query_latency_ms=mean(latencies),
        p95_latency_ms=percentile_95(latencies),
        min_latency_ms=min(latencies) if latencies else 0.0,
        max_latency_ms=max(latencies) if latencies else 0.0,
    )

    tokens = sum(o.tokens_used for o in outcomes)
    cost_usd = sum(o.cost_usd for o in outcomes)
    cost = CostMetrics(
        embedding_calls=sum(o.embedding_calls for o in outcomes),
        embedding_tokens=tokens,
        embedding_cost_usd=cost_usd,
        evaluation_calls=len(outcomes),
        total_tokens=tokens,
        estimated_usd=cost_usd,
        model_used=model,
    )
    return metrics, latency, cost, results


class RunEvaluator:
    """Evaluates one Experiment against one EvalSet and records the Run"""

    def __init__(
        self,
        store: BaseOptimizerStore,
        embedding_client: OpenAIEmbeddingClient,
        retriever: ANNRetriever,
        max_concurrent_queries: int = None
    ):
        self.store = store
        self.embedding_client = embedding_client
        self.retriever = retriever
        self.pool = BatchProcessor(
            max_concurrent=max_concurrent_queries or settings.evaluation_max_concurrent_queries
        )

    async def _evaluate_query(
        self,
        experiment: Experiment,
        query: EvalQuery,
        cancellation: Optional[CancellationToken]
    ) -> QueryOutcome:
        if cancellation is not None and cancellation.cancelled:
            return QueryOutcome(query_id=query.id, succeeded=False, cancelled=True, error=CANCELLED_MESSAGE)

        config = experiment.retrieval_config
        started = time.perf_counter()

        try:
            embedding = await self.embedding_client.embed_query(query.query, experiment.embedding_model)
        except OptimizerException as e:
            logger.warning(f"Embedding failed for query {query.id}: {e}")
            return QueryOutcome(query_id=query.id, succeeded=False, error=str(e))
        except Exception as e:
            logger.error(f"Unexpected embedding error for query {query.id}: {e}", exc_info=True)
            return QueryOutcome(query_id=query.id, succeeded=False, error=f"Embedding failed: {e}")

        outcome = QueryOutcome(
            query_id=query.id,
            succeeded=False,
            embedding_calls=1,
            tokens_used=embedding.tokens_used,
            cost_usd=embedding.cost_usd,
        )

        search_filter = {**config.filters, "project_id": experiment.project_id}
        try:
            hits = await self.retriever.search(
                embedding.embedding,
                top_k=config.top_k,
                similarity_threshold=config.similarity_threshold,
                filter=search_filter,
            )
        except OptimizerException as e:
            outcome.latency_ms = (time.perf_counter() - started) * 1000
            outcome.error = str(e)
            logger.warning(f"Search failed for query {query.id}: {e}")
            return outcome
        except Exception as e:
            outcome.latency_ms = (time.perf_counter() - started) * 1000
            outcome.error = f"Search failed: {e}"
            logger.error(f"Unexpected search error for query {query.id}: {e}", exc_info=True)
            return outcome

        outcome.latency_ms = (time.perf_counter() - started) * 1000

        retrieved_chunk_ids = [hit.chunk_id for hit in hits]
        retrieved_document_ids = list(dict.fromkeys(hit.document_id for hit in hits if hit.document_id))
        metrics = compute_query_metrics(
            retrieved_chunk_ids,
            query.expected_chunk_ids,
            config.top_k,
            query.relevance_scores,
        )

        outcome.succeeded = True
        outcome.result = QueryResult(
            query_id=query.id,
            query=query.query,
            retrieved_chunk_ids=retrieved_chunk_ids,
            retrieved_document_ids=retrieved_document_ids,
            expected_chunk_ids=query.expected_chunk_ids,
            expected_document_ids=query.expected_document_ids,
            latency_ms=outcome.latency_ms,
            metrics=QueryMetrics(**metrics),
        )
        return outcome

    async def evaluate(
        self,
        experiment: Experiment,
        eval_set: EvalSet,
        queries: List[EvalQuery],
        cancellation: Optional[CancellationToken] = None
    ) -> RunResult:
        """
        Evaluate every query of an eval set with the experiment's configuration.

        Args:
            experiment: Configuration under test
            eval_set: Eval set the queries belong to
            queries: The eval set's queries, in order
            cancellation: Optional token; queries not yet started are skipped once set

        Returns:
            RunResult. `persisted` is False when the final write failed.
        """
        if not queries:
            raise InputError(f"Eval set {eval_set.id} has no queries")

        started = time.perf_counter()
        run = await self.store.create_run(experiment.id, eval_set.id, eval_set.version)
        run_id = run["id"]
        logger.info(f"Run {run_id}: evaluating experiment '{experiment.name}' on {len(queries)} queries")

        try:
            outcomes = await self.pool.process_batch(
                queries,
                lambda query: self._evaluate_query(experiment, query, cancellation),
            )
        except Exception as e:
            # Only reached on a bug in the worker; never leave the run in `running`
            logger.error(f"Run {run_id} crashed: {e}", exc_info=True)
            await self._finalize(run_id, RunStatus.FAILED, error_message=f"Evaluation crashed: {e}")
            raise

        metrics, latency, cost, results = aggregate_outcomes(outcomes, experiment.embedding_model)
        summary = build_run_summary(metrics, latency, cost, experiment.retrieval_config.top_k)

        was_cancelled = any(o.cancelled for o in outcomes)
        error_message = None
        if was_cancelled:
            status = RunStatus.FAILED
            error_message = CANCELLED_MESSAGE
        elif metrics.successful_queries == 0:
            status = RunStatus.FAILED
            error_message = next((o.error for o in outcomes if o.error), "All queries failed")
        else:
            status = RunStatus.COMPLETED

        persisted = await self._finalize(
            run_id,
            status,
            metrics=metrics.model_dump(),
            cost_metrics=cost.model_dump(),
            latency_stats=latency.model_dump(),
            query_results=[r.model_dump() for r in results],
            summary=summary,
            error_message=error_message,
        )

        if cost.embedding_calls > 0:
            await self._log_cost(experiment, eval_set, run_id, cost, metrics)

        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(f"Run {run_id} {status.value} in {duration_ms:.0f}ms: {summary}")

        return RunResult(
            run_id=run_id,
            experiment_id=experiment.id,
            eval_set_id=eval_set.id,
            status=status,
            metrics=metrics,
            cost_metrics=cost,
            latency_stats=latency,
            summary=summary,
            query_results=results,
            error_message=error_message,
            persisted=persisted,
            duration_ms=duration_ms,
        )

    async def _finalize(self, run_id: str, status: RunStatus, **fields) -> bool:
        try:
            await self.store.finalize_run(run_id, status.value, **fields)
            return True
        except (PersistenceError, NotFoundError) as e:
            logger.error(f"Failed to persist run {run_id}: {e}")
            return False

    async def _log_cost(
        self,
        experiment: Experiment,
        eval_set: EvalSet,
        run_id: str,
        cost: CostMetrics,
        metrics: AggregateMetrics
    ) -> None:
        try:
            await self.store.log_cost(
                project_id=experiment.project_id,
                operation_type=OperationType.EVALUATION.value,
                operation_id=run_id,
                cost_usd=cost.estimated_usd,
                tokens=cost.total_tokens,
                model=cost.model_used,
                metadata={
                    "experiment_id": experiment.id,
                    "eval_set_id": eval_set.id,
                    "query_count": metrics.query_count,
                    "successful_queries": metrics.successful_queries,
                },
            )
        except PersistenceError as e:
            logger.error(f"Failed to log cost for run {run_id}: {e}")
