"""Tests for OpenAIEmbeddingClient using httpx.MockTransport."""

import json

import httpx
import pytest

from core.exceptions import EmbeddingError
from domain.budget.cost_estimator import embedding_cost
from domain.rag.embedding.client import OpenAIEmbeddingClient

API_URL = "https://embeddings.test/v1/embeddings"


def make_client(handler) -> OpenAIEmbeddingClient:
    return OpenAIEmbeddingClient(
        api_key="test-key",
        api_url=API_URL,
        default_model="text-embedding-3-small",
        rate_limit=1000,
        transport=httpx.MockTransport(handler),
    )


class TestEmbedQuery:
    """Tests for OpenAIEmbeddingClient.embed_query."""

    async def test_success_uses_reported_usage(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "data": [{"embedding": [0.1, 0.2, 0.3]}],
                "usage": {"prompt_tokens": 7, "total_tokens": 7},
            })

        client = make_client(handler)
        result = await client.embed_query("hello world", model="text-embedding-3-large")
        await client.close()

        assert result.embedding == [0.1, 0.2, 0.3]
        assert result.tokens_used == 7
        assert result.model == "text-embedding-3-large"
        assert result.cost_usd == pytest.approx(embedding_cost(7, "text-embedding-3-large"))
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"] == {"model": "text-embedding-3-large", "input": "hello world"}

    async def test_usage_falls_back_to_estimate(self) -> None:
        """Without usage, tokens are estimated at ~4 characters per token."""
        client = make_client(lambda request: httpx.Response(200, json={"data": [{"embedding": [1.0]}]}))
        result = await client.embed_query("a" * 10)
        await client.close()

        assert result.tokens_used == 3
        assert result.model == "text-embedding-3-small"

    async def test_client_error_is_not_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, json={"error": "bad input"})

        client = make_client(handler)
        with pytest.raises(EmbeddingError, match="400"):
            await client.embed_query("hello")
        await client.close()
        assert len(calls) == 1

    async def test_malformed_response(self) -> None:
        client = make_client(lambda request: httpx.Response(200, json={"data": []}))
        with pytest.raises(EmbeddingError, match="Malformed"):
            await client.embed_query("hello")
        await client.close()

    async def test_non_json_body(self) -> None:
        """A gateway page served with 200 surfaces as an EmbeddingError."""
        client = make_client(lambda request: httpx.Response(200, text="<html>gateway</html>"))
        with pytest.raises(EmbeddingError, match="Malformed"):
            await client.embed_query("hello")
        await client.close()

    async def test_invalid_embedding_payload(self) -> None:
        client = make_client(lambda request: httpx.Response(200, json={
            "data": [{"embedding": ["not", "floats"]}],
        }))
        with pytest.raises(EmbeddingError, match="Malformed"):
            await client.embed_query("hello")
        await client.close()

    async def test_missing_api_key(self) -> None:
        client = OpenAIEmbeddingClient(api_key="", api_url=API_URL)
        with pytest.raises(EmbeddingError, match="API key"):
            await client.embed_query("hello")

    async def test_empty_text(self) -> None:
        client = make_client(lambda request: httpx.Response(200, json={}))
        with pytest.raises(EmbeddingError):
            await client.embed_query("")
