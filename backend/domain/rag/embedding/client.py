"""
Async OpenAI-compatible embedding client with connection pooling, retry logic, and rate limiting
"""

import logging
import asyncio
from typing import Any, Dict, Optional
import httpx
from core.config import settings
from core.exceptions import EmbeddingError
from utils.retry import retry_with_backoff
from domain.budget.cost_estimator import embedding_cost, estimate_token_count
from domain.rag.embedding.types import EmbeddingResult

logger = logging.getLogger(__name__)


def _is_permanent(error: BaseException) -> bool:
    # 4xx other than rate limiting will not succeed on retry
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return 400 <= status < 500 and status != 429
    return False


class OpenAIEmbeddingClient:
    """Async client for an OpenAI-compatible /v1/embeddings endpoint"""

    def __init__(
        self,
        api_key: str = None,
        api_url: str = None,
        default_model: str = None,
        timeout: int = None,
        rate_limit: int = None,
        transport: httpx.AsyncBaseTransport = None
    ):
        self.api_key = api_key if api_key is not None else settings.embedding_api_key
        self.api_url = api_url or settings.embedding_api_url
        self.default_model = default_model or settings.embedding_default_model
        self.timeout = timeout or settings.embedding_timeout
        self.rate_limit = rate_limit or settings.embedding_rate_limit
        self._transport = transport

        # Connection pool
        self._client: Optional[httpx.AsyncClient] = None
        self._rate_limiter = asyncio.Semaphore(self.rate_limit)
        self._last_request_time = 0.0
        self._min_request_interval = 1.0 / self.rate_limit

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                }
            )
        return self._client

    async def _rate_limit(self):
        """Rate limiting"""
        async with self._rate_limiter:
            loop = asyncio.get_running_loop()
            time_since_last = loop.time() - self._last_request_time
            if time_since_last < self._min_request_interval:
                await asyncio.sleep(self._min_request_interval - time_since_last)
            self._last_request_time = loop.time()

    @retry_with_backoff(
        max_retries=3,
        base_delay=1.0,
        retry_on=(httpx.TransportError, httpx.HTTPStatusError),
        giveup=_is_permanent
    )
    async def _make_api_call(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Make a single API call with rate limiting."""
        await self._rate_limit()
        client = await self._get_client()
        response = await client.post(self.api_url, json=payload)
        response.raise_for_status()
        return response.json()

    async def embed_query(self, text: str, model: str = None) -> EmbeddingResult:
        """
        Embed one query string.

        Args:
            text: Query text
            model: Embedding model name (defaults to the configured model)

        Returns:
            EmbeddingResult with the vector and the tokens/cost it was billed for.
            Token usage falls back to a character-based estimate when the
            provider omits it.
        """
        if not self.api_key:
            raise EmbeddingError("Embedding API key not configured. Set EMBEDDING_API_KEY.")
        if not text:
            raise EmbeddingError("text must not be empty")

        model = model or self.default_model
        try:
            data = await self._make_api_call({"model": model, "input": text})
        except httpx.HTTPStatusError as e:
            logger.error(f"Embedding API error: {e.response.status_code} - {e.response.text}")
            raise EmbeddingError(f"Embedding API error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Embedding request failed: {e}")
            raise EmbeddingError(f"Failed to generate embedding: {e}") from e
        except ValueError as e:
            # Body was not JSON (e.g. a gateway error page served with 200)
            logger.error(f"Embedding API returned a non-JSON body: {e}")
            raise EmbeddingError(f"Malformed embedding response: {e}") from e

        try:
            embedding = data["data"][0]["embedding"]
            usage = data.get("usage") or {}
            tokens = usage.get("total_tokens") or usage.get("prompt_tokens") or estimate_token_count(text)
            return EmbeddingResult(
                embedding=embedding,
                tokens_used=tokens,
                cost_usd=embedding_cost(tokens, model),
                model=model,
            )
        except Exception as e:
            raise EmbeddingError(f"Malformed embedding response: {e}") from e

    async def close(self):
        """Close HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None
