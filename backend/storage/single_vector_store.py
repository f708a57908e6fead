"""
Single vector store implementation using ChromaDB.
Supports embedded (dev) and cloud (production) deployment modes.
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Dict, Any, Optional

import chromadb
from chromadb.config import Settings as ChromaSettings

from storage.base import BaseSingleVectorStore
from core.config import settings
from core.exceptions import StorageError

logger = logging.getLogger(__name__)


def build_where_clause(filter: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Translate a flat equality filter into a ChromaDB where clause.

    ChromaDB rejects an empty dict and needs `$and` for more than one field.
    """
    if not filter:
        return None
    if len(filter) == 1 or any(key.startswith("$") for key in filter):
        return dict(filter)
    return {"$and": [{key: value} for key, value in filter.items()]}


class SingleVectorStore(BaseSingleVectorStore):
    """
    Single vector store using ChromaDB with flexible deployment modes.

    The deployment mode is determined by settings.vector_store_backend:
    - "chromadb_embedded": Local persistent storage (default for dev)
    - "chromadb_cloud": Connect to ChromaDB Cloud (managed service)

    To switch modes, set the VECTOR_STORE_BACKEND environment variable.
    """

    def __init__(
        self,
        backend_type: Optional[str] = None,
        collection_name: Optional[str] = None
    ):
        backend_type = backend_type or settings.vector_store_backend
        collection_name = collection_name or settings.vector_store_collection_name

        if backend_type == "chromadb_embedded":
            self._init_embedded()
        elif backend_type == "chromadb_cloud":
            self._init_cloud()
        else:
            raise ValueError(
                f"Unsupported vector store backend: {backend_type}. "
                f"Supported: chromadb_embedded, chromadb_cloud"
            )

        # Get or create collection
        self.collection = self.client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"}
        )

        logger.info(f"Initialized SingleVectorStore with backend: {backend_type}, collection: {collection_name}")

    def _init_embedded(self, store_path: Optional[Path] = None):
        """Initialize ChromaDB embedded mode (local persistent storage)"""
        store_path = Path(store_path or settings.single_vector_store_path)

        # Resolve relative paths relative to backend directory
        if not store_path.is_absolute():
            backend_dir = Path(__file__).parent.parent
            store_path = (backend_dir / store_path).resolve()

        store_path.mkdir(parents=True, exist_ok=True)

        self.client = chromadb.PersistentClient(
            path=str(store_path),
            settings=ChromaSettings(anonymized_telemetry=False)
        )

        logger.info(f"ChromaDB embedded store initialized at: {store_path}")

    def _init_cloud(self, api_key: str = None, tenant: str = None, database: str = None):
        """Initialize ChromaDB Cloud mode (managed service)"""
        api_key = api_key or settings.chromadb_cloud_api_key
        tenant = tenant or settings.chromadb_cloud_tenant
        database = database or settings.chromadb_cloud_database

        if not api_key:
            raise ValueError(
                "ChromaDB Cloud requires api_key. Set CHROMADB_CLOUD_API_KEY environment variable."
            )
        if not tenant:
            raise ValueError(
                "ChromaDB Cloud requires tenant. Set CHROMADB_CLOUD_TENANT environment variable."
            )

        self.client = chromadb.CloudClient(
            tenant=tenant,
            database=database,
            api_key=api_key,
        )

    async def query(
        self,
        query_vectors: List[List[float]],
        top_k: int = 10,
        filter: Optional[Dict[str, Any]] = None
    ) -> List[List[Dict[str, Any]]]:
        """
        Query the store with multiple query vectors.

        Args:
            query_vectors: List of query embedding vectors
            top_k: Number of results to return per query
            filter: Optional flat equality filter on chunk metadata

        Returns:
            List of result lists, one per query vector. Each inner list contains dicts with:
            - 'chunk_id': str - Unique chunk identifier
            - 'score': float - Similarity score (higher is better)
            - 'metadata': Dict[str, Any] - Chunk metadata
        """
        if not query_vectors:
            raise StorageError("query_vectors list must not be empty")

        try:
            # The chromadb client is synchronous
            results = await asyncio.to_thread(
                self.collection.query,
                query_embeddings=query_vectors,
                n_results=top_k,
                where=build_where_clause(filter)
            )
        except Exception as e:
            logger.error(f"Error querying vectors: {e}")
            raise StorageError(f"Failed to query vectors: {e}") from e

        ids = results.get("ids") or []
        distances = results.get("distances") or []
        metadatas = results.get("metadatas") or []

        all_formatted_results = []
        for query_idx in range(len(query_vectors)):
            formatted_results = []
            if query_idx < len(ids):
                query_metadatas = metadatas[query_idx] if query_idx < len(metadatas) and metadatas[query_idx] else []
                for i, chunk_id in enumerate(ids[query_idx]):
                    formatted_results.append({
                        "chunk_id": chunk_id,
                        "score": 1.0 - distances[query_idx][i],  # Convert distance to similarity
                        "metadata": (query_metadatas[i] if i < len(query_metadatas) else None) or {},
                    })
            all_formatted_results.append(formatted_results)

        return all_formatted_results
