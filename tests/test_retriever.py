"""Tests for ANNRetriever."""

import pytest

from core.exceptions import SearchError
from domain.rag.retrieval.ann_retriever import ANNRetriever

from conftest import FakeVectorStore, encode


class TestANNRetriever:
    """Tests for ANNRetriever.search."""

    async def test_sorted_and_thresholded(self) -> None:
        store = FakeVectorStore(hits={"q": [("b", 0.4), ("a", 0.9), ("c", 0.7)]})
        results = await ANNRetriever(store).search(encode("q"), top_k=5, similarity_threshold=0.5)

        assert [r.chunk_id for r in results] == ["a", "c"]
        assert results[0].document_id == "doc-a"

    async def test_top_k_limits_results(self) -> None:
        store = FakeVectorStore(hits={"q": [("a", 0.9), ("b", 0.8), ("c", 0.7)]})
        results = await ANNRetriever(store).search(encode("q"), top_k=2)
        assert [r.chunk_id for r in results] == ["a", "b"]

    async def test_filter_is_passed_through(self) -> None:
        store = FakeVectorStore(hits={})
        await ANNRetriever(store).search(encode("q"), filter={"project_id": "p1"})
        assert store.filters == [{"project_id": "p1"}]

    async def test_zero_top_k(self) -> None:
        store = FakeVectorStore()
        assert await ANNRetriever(store).search(encode("q"), top_k=0) == []
        assert store.filters == []

    async def test_backend_error(self) -> None:
        store = FakeVectorStore(fail_on={"q"})
        with pytest.raises(SearchError, match="ANN retrieval failed"):
            await ANNRetriever(store).search(encode("q"))

    async def test_timeout(self) -> None:
        store = FakeVectorStore(stall_on={"q"})
        with pytest.raises(SearchError, match="timed out"):
            await ANNRetriever(store, timeout=0.05).search(encode("q"))

    async def test_empty_vector(self) -> None:
        with pytest.raises(SearchError):
            await ANNRetriever(FakeVectorStore()).search([])
