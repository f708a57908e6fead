"""
ANN retrieval using single vectors
"""

import asyncio
import logging
from typing import List, Dict, Any, Optional
from core.config import settings
from core.exceptions import SearchError
from domain.rag.retrieval.types import RetrievalResult
from storage.base import BaseSingleVectorStore

logger = logging.getLogger(__name__)


class ANNRetriever:
    """Search provider: ANN search over single vectors, bounded by a timeout"""

    def __init__(self, vector_store: BaseSingleVectorStore, timeout: float = None):
        self.vector_store = vector_store
        self.timeout = timeout or settings.search_timeout

    async def search(
        self,
        query_vector: List[float],
        top_k: int = 5,
        similarity_threshold: float = 0.0,
        filter: Optional[Dict[str, Any]] = None
    ) -> List[RetrievalResult]:
        """
        Retrieve chunks for one query vector.

        Args:
            query_vector: Query embedding vector
            top_k: Maximum number of results
            similarity_threshold: Results scoring below this are dropped
            filter: Optional metadata filter (project scope plus experiment filters)

        Returns:
            Results ordered by descending score
        """
        if not query_vector:
            raise SearchError("query_vector must not be empty")
        if top_k <= 0:
            return []

        try:
            batches = await asyncio.wait_for(
                self.vector_store.query(
                    query_vectors=[query_vector],
                    top_k=top_k,
                    filter=filter
                ),
                timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"ANN search timed out after {self.timeout}s")
            raise SearchError(f"Search timed out after {self.timeout}s") from e
        except Exception as e:
            logger.error(f"Error in ANN retrieval: {e}")
            raise SearchError(f"ANN retrieval failed: {e}") from e

        hits = batches[0] if batches else []
        results = []
        for hit in hits:
            if hit["score"] < similarity_threshold:
                continue
            metadata = hit.get("metadata") or {}
            document_id = metadata.get("document_id") or metadata.get("doc_id")
            results.append(RetrievalResult(
                chunk_id=hit["chunk_id"],
                score=hit["score"],
                document_id=str(document_id) if document_id is not None else None,
                metadata=metadata,
            ))

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:top_k]
