"""
Application startup and initialization logic
"""

import logging
from datetime import timedelta
from fastapi import FastAPI

from core.config import settings
from storage import OptimizerSQLStore, SingleVectorStore
from domain.rag.embedding.client import OpenAIEmbeddingClient
from domain.rag.retrieval.ann_retriever import ANNRetriever
from domain.evaluation.cancellation import CancellationRegistry
from domain.evaluation.evaluator import RunEvaluator
from domain.evaluation.reporter import EvaluationReporter
from services.budget_service import BudgetService, utc_now
from services.evaluation_service import EvaluationService
from services.experiment_service import ExperimentService
from services.optimization_service import OptimizationService

logger = logging.getLogger(__name__)


async def initialize_optimizer_system(app: FastAPI):
    """
    Initialize the optimizer components (stores, providers, services).
    Runs left in `running` by a previous process are marked failed.
    """
    optimizer_store = OptimizerSQLStore()
    single_vector_store = SingleVectorStore()
    embedding_client = OpenAIEmbeddingClient()
    retriever = ANNRetriever(single_vector_store)

    evaluator = RunEvaluator(
        store=optimizer_store,
        embedding_client=embedding_client,
        retriever=retriever,
    )
    budget_service = BudgetService(optimizer_store)
    cancellations = CancellationRegistry()
    evaluation_service = EvaluationService(
        store=optimizer_store,
        evaluator=evaluator,
        reporter=EvaluationReporter(),
        budget_service=budget_service,
        cancellations=cancellations,
    )
    experiment_service = ExperimentService(optimizer_store)
    optimization_service = OptimizationService(
        store=optimizer_store,
        budget_service=budget_service,
        experiment_service=experiment_service,
        evaluation_service=evaluation_service,
        cancellations=cancellations,
    )

    stale_before = utc_now() - timedelta(minutes=settings.stale_run_timeout_minutes)
    reconciled = await optimizer_store.reconcile_abandoned_runs(started_before=stale_before)
    if reconciled:
        logger.warning(f"Marked {reconciled} abandoned runs as failed")

    app.state.optimizer_store = optimizer_store
    app.state.single_vector_store = single_vector_store
    app.state.embedding_client = embedding_client

    app.state.evaluation_service = evaluation_service
    app.state.budget_service = budget_service
    app.state.experiment_service = experiment_service
    app.state.optimization_service = optimization_service


async def cleanup_optimizer_system(app: FastAPI):
    """Cleanup optimizer resources (embedding HTTP connections, database pool)."""
    if hasattr(app.state, 'embedding_client') and app.state.embedding_client:
        try:
            await app.state.embedding_client.close()
            logger.info("Embedding client cleaned up")
        except Exception as e:
            logger.error(f"Error during embedding client cleanup: {e}", exc_info=True)

    if hasattr(app.state, 'optimizer_store') and app.state.optimizer_store:
        try:
            app.state.optimizer_store.close()
            logger.info("Optimizer store cleaned up")
        except Exception as e:
            logger.error(f"Error during optimizer store cleanup: {e}", exc_info=True)
