"""Shared fixtures for the optimizer tests.

Providers are replaced by in-memory fakes:
- FakeEmbeddingClient encodes the query text into its vector, so the fake
  vector store can recover which query it is answering.
- FakeVectorStore returns canned hits per query text and can be told to fail
  or to stall for specific queries.

The optimizer store is the real SQLAlchemy store on a SQLite file in tmp_path.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest

from core.exceptions import EmbeddingError
from domain.budget.cost_estimator import embedding_cost
from domain.evaluation.cancellation import CancellationRegistry
from domain.evaluation.evaluator import RunEvaluator
from domain.evaluation.reporter import EvaluationReporter
from domain.rag.embedding.types import EmbeddingResult
from domain.rag.retrieval.ann_retriever import ANNRetriever
from services.budget_service import BudgetService
from services.evaluation_service import EvaluationService
from services.experiment_service import ExperimentService
from services.optimization_service import OptimizationService
from storage.base import BaseSingleVectorStore
from storage.optimizer_sql_store import OptimizerSQLStore

FIXED_NOW = datetime(2026, 3, 15, 12, 0, 0)

EVAL_QUERIES = [
    {"query": "what is a vector", "expected_chunk_ids": ["c1"], "expected_document_ids": ["d1"]},
    {"query": "how do embeddings work", "expected_chunk_ids": ["c2", "c3"], "expected_document_ids": ["d1"]},
    {"query": "define recall", "expected_chunk_ids": ["c4"], "expected_document_ids": ["d2"]},
]

QUERY_HITS = {
    "what is a vector": [("c1", 0.95), ("c2", 0.80), ("c3", 0.60)],
    "how do embeddings work": [("c9", 0.90), ("c2", 0.85), ("c3", 0.75)],
    "define recall": [("c7", 0.70), ("c8", 0.65)],
}


def encode(text: str) -> List[float]:
    return [float(ord(char)) for char in text]


def decode(vector: List[float]) -> str:
    return "".join(chr(int(value)) for value in vector)


class FakeEmbeddingClient:
    """Embedding client that bills 10 tokens per call at the model's real rate"""

    def __init__(self, fail_on: Optional[set] = None, delay_by_model: Optional[Dict[str, float]] = None):
        self.fail_on = fail_on or set()
        self.delay_by_model = delay_by_model or {}
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def embed_query(self, text: str, model: str = None) -> EmbeddingResult:
        model = model or "text-embedding-3-small"
        self.calls.append({"text": text, "model": model})
        delay = self.delay_by_model.get(model)
        if delay:
            await asyncio.sleep(delay)
        if text in self.fail_on:
            raise EmbeddingError(f"Embedding API error: 500 for '{text}'")
        return EmbeddingResult(
            embedding=encode(text),
            tokens_used=10,
            cost_usd=embedding_cost(10, model),
            model=model,
        )

    async def close(self):
        self.closed = True


class FakeVectorStore(BaseSingleVectorStore):
    """Canned search results keyed by query text"""

    def __init__(
        self,
        hits: Optional[Dict[str, list]] = None,
        fail_on: Optional[set] = None,
        stall_on: Optional[set] = None
    ):
        self.hits = QUERY_HITS if hits is None else hits
        self.fail_on = fail_on or set()
        self.stall_on = stall_on or set()
        self.filters: List[Optional[Dict[str, Any]]] = []

    async def query(self, query_vectors, top_k=10, filter=None):
        self.filters.append(filter)
        results = []
        for vector in query_vectors:
            text = decode(vector)
            if text in self.stall_on:
                await asyncio.sleep(10)
            if text in self.fail_on:
                raise RuntimeError(f"search backend unavailable for '{text}'")
            results.append([
                {"chunk_id": chunk_id, "score": score, "metadata": {"document_id": f"doc-{chunk_id}"}}
                for chunk_id, score in self.hits.get(text, [])[:top_k]
            ])
        return results


@pytest.fixture
def store(tmp_path):
    optimizer_store = OptimizerSQLStore(f"sqlite:///{tmp_path / 'optimizer.db'}")
    yield optimizer_store
    optimizer_store.close()


@pytest.fixture
async def project(store):
    return await store.create_project(
        "demo",
        monthly_budget_usd=10.0,
        max_cost_per_query_usd=0.01,
        budget_enforcement_mode="warn",
    )


@pytest.fixture
async def eval_set(store, project):
    return await store.create_eval_set(project["id"], "golden", EVAL_QUERIES, description="Golden queries")


@pytest.fixture
async def experiment(store, project):
    created = await store.create_experiments(project["id"], [{
        "name": "small_k3",
        "embedding_model": "text-embedding-3-small",
        "retrieval_config": {"top_k": 3, "similarity_threshold": 0.5, "filters": {}},
    }])
    return created[0]


@pytest.fixture
def embedding_client():
    return FakeEmbeddingClient()


@pytest.fixture
def vector_store():
    return FakeVectorStore()


@pytest.fixture
def retriever(vector_store):
    return ANNRetriever(vector_store, timeout=0.5)


@pytest.fixture
def evaluator(store, embedding_client, retriever):
    return RunEvaluator(store, embedding_client, retriever, max_concurrent_queries=2)


@pytest.fixture
def reporter(tmp_path):
    return EvaluationReporter(results_dir=tmp_path / "eval")


@pytest.fixture
def cancellations():
    return CancellationRegistry()


@pytest.fixture
def evaluation_service(store, evaluator, reporter, cancellations):
    return EvaluationService(store, evaluator, reporter, max_concurrent_runs=2, cancellations=cancellations)


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def budget_service(store, fixed_clock):
    return BudgetService(store, clock=fixed_clock)


@pytest.fixture
def experiment_service(store):
    return ExperimentService(store)


@pytest.fixture
def optimization_service(store, evaluation_service, experiment_service, cancellations):
    # Real clock: evaluation cost logs are written with the current time
    return OptimizationService(
        store=store,
        budget_service=BudgetService(store),
        experiment_service=experiment_service,
        evaluation_service=evaluation_service,
        cancellations=cancellations,
    )
