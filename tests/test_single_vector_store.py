"""Tests for the ChromaDB search backend (embedded mode on tmp_path)."""

import pytest

from core.config import settings
from core.exceptions import StorageError
from storage.single_vector_store import SingleVectorStore, build_where_clause


class TestBuildWhereClause:
    def test_empty(self) -> None:
        assert build_where_clause(None) is None
        assert build_where_clause({}) is None

    def test_single_field(self) -> None:
        assert build_where_clause({"project_id": "p1"}) == {"project_id": "p1"}

    def test_multiple_fields(self) -> None:
        assert build_where_clause({"project_id": "p1", "lang": "en"}) == {
            "$and": [{"project_id": "p1"}, {"lang": "en"}]
        }


@pytest.fixture
def chroma_store(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "single_vector_store_path", str(tmp_path / "chroma"))
    store = SingleVectorStore(backend_type="chromadb_embedded", collection_name="chunks_test")
    store.collection.add(
        ids=["c1", "c2", "c3"],
        embeddings=[[1.0, 0.0], [0.0, 1.0], [0.7, 0.7]],
        metadatas=[
            {"project_id": "p1", "document_id": "d1"},
            {"project_id": "p1", "document_id": "d2"},
            {"project_id": "p2", "document_id": "d3"},
        ],
    )
    return store


class TestSingleVectorStore:
    """Tests for SingleVectorStore.query."""

    async def test_query_scoped_to_project(self, chroma_store) -> None:
        (hits,) = await chroma_store.query([[1.0, 0.0]], top_k=2, filter={"project_id": "p1"})

        assert [h["chunk_id"] for h in hits] == ["c1", "c2"]
        assert hits[0]["score"] == pytest.approx(1.0, abs=1e-4)
        assert hits[0]["metadata"]["document_id"] == "d1"

    async def test_empty_query_vectors(self, chroma_store) -> None:
        with pytest.raises(StorageError):
            await chroma_store.query([])

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError):
            SingleVectorStore(backend_type="faiss")
