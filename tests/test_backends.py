"""Tests for the embedding model backends.

OpenAI and HTTP calls are mocked; sentence-transformers is replaced by a
stub module so no model is downloaded.
"""

import sys
import types
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from notesearch.config import Settings
from notesearch.search.backends import (
    HttpEmbeddingModel,
    OpenAIEmbeddingModel,
    SentenceTransformerModel,
    build_model_loader,
    load_sentence_transformer,
)
from notesearch.search.embeddings import EmbeddingError, EmbeddingService

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_openai_response(embeddings: list[list[float]]):
    """Build a fake OpenAI embeddings.create() response object."""
    data = []
    for idx, emb in enumerate(embeddings):
        item = MagicMock()
        item.embedding = emb
        item.index = idx
        data.append(item)
    response = MagicMock()
    response.data = data
    return response


def _http_response(status_code: int, json_body=None, url: str = "http://embed.local/embed") -> httpx.Response:
    return httpx.Response(status_code, json=json_body, request=httpx.Request("POST", url))


def _patched_async_client(post: AsyncMock):
    client = MagicMock()
    client.post = post
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return patch("notesearch.search.backends.httpx.AsyncClient", return_value=client)


# ---------------------------------------------------------------------------
# OpenAI backend
# ---------------------------------------------------------------------------


class TestOpenAIEmbeddingModel:
    @pytest.mark.asyncio
    async def test_encode_returns_first_embedding(self):
        model = OpenAIEmbeddingModel(api_key="test-api-key-fake", model="text-embedding-3-small", dimensions=3)
        fake_response = _make_openai_response([[0.1, 0.2, 0.3]])

        with patch.object(
            model._client.embeddings, "create", new_callable=AsyncMock, return_value=fake_response
        ) as create:
            result = await model.encode("Hello world")

        assert result == [0.1, 0.2, 0.3]
        create.assert_awaited_once_with(input=["Hello world"], model="text-embedding-3-small", dimensions=3)

    @pytest.mark.asyncio
    async def test_api_error_raises_embedding_error(self):
        import openai

        model = OpenAIEmbeddingModel(api_key="test-api-key-fake", model="text-embedding-3-small")
        api_error = openai.APIError(message="rate limit", request=MagicMock(), body=None)

        with patch.object(model._client.embeddings, "create", new_callable=AsyncMock, side_effect=api_error):
            with pytest.raises(EmbeddingError):
                await model.encode("Hello world")

    @pytest.mark.asyncio
    async def test_empty_response_raises_embedding_error(self):
        model = OpenAIEmbeddingModel(api_key="test-api-key-fake", model="text-embedding-3-small")

        with patch.object(
            model._client.embeddings, "create", new_callable=AsyncMock, return_value=_make_openai_response([])
        ):
            with pytest.raises(EmbeddingError):
                await model.encode("Hello world")


# ---------------------------------------------------------------------------
# HTTP backend
# ---------------------------------------------------------------------------


class TestHttpEmbeddingModel:
    @pytest.mark.asyncio
    async def test_encode_posts_to_embed_endpoint(self):
        model = HttpEmbeddingModel("http://embed.local/", dimensions=2)
        post = AsyncMock(return_value=_http_response(200, {"embeddings": [[0.5, 0.5]]}))

        with _patched_async_client(post):
            result = await model.encode("some text")

        assert result == [0.5, 0.5]
        post.assert_awaited_once_with(
            "http://embed.local/embed",
            json={"input": ["some text"], "dimensions": 2},
        )

    @pytest.mark.asyncio
    async def test_http_status_error_raises_embedding_error(self):
        model = HttpEmbeddingModel("http://embed.local", dimensions=2)
        post = AsyncMock(return_value=_http_response(503, {"detail": "busy"}))

        with _patched_async_client(post):
            with pytest.raises(EmbeddingError):
                await model.encode("some text")

    @pytest.mark.asyncio
    async def test_request_error_raises_embedding_error(self):
        model = HttpEmbeddingModel("http://embed.local", dimensions=2)
        post = AsyncMock(side_effect=httpx.ConnectError("connection refused"))

        with _patched_async_client(post):
            with pytest.raises(EmbeddingError):
                await model.encode("some text")

    @pytest.mark.asyncio
    async def test_malformed_response_raises_embedding_error(self):
        model = HttpEmbeddingModel("http://embed.local", dimensions=2)
        post = AsyncMock(return_value=_http_response(200, {"vectors": []}))

        with _patched_async_client(post):
            with pytest.raises(EmbeddingError, match="Unexpected response"):
                await model.encode("some text")


# ---------------------------------------------------------------------------
# sentence-transformers backend
# ---------------------------------------------------------------------------


class _FakeSentenceTransformer:
    instances = 0

    def __init__(self, name: str):
        type(self).instances += 1
        self.name = name
        self.encode_kwargs: dict = {}

    def encode(self, text, **kwargs):
        self.encode_kwargs = kwargs
        return [0.0, 1.0]


class TestSentenceTransformerBackend:
    @pytest.mark.asyncio
    async def test_load_and_encode(self):
        stub = types.ModuleType("sentence_transformers")
        stub.SentenceTransformer = _FakeSentenceTransformer

        with patch.dict(sys.modules, {"sentence_transformers": stub}):
            model = await load_sentence_transformer("all-MiniLM-L6-v2")

        assert isinstance(model, SentenceTransformerModel)
        assert model._model.name == "all-MiniLM-L6-v2"
        assert await model.encode("hello") == [0.0, 1.0]
        assert model._model.encode_kwargs == {"normalize_embeddings": True}

    @pytest.mark.asyncio
    async def test_encode_failure_raises_embedding_error(self):
        broken = MagicMock()
        broken.encode.side_effect = RuntimeError("CUDA error")
        model = SentenceTransformerModel(broken)

        with pytest.raises(EmbeddingError, match="CUDA error"):
            await model.encode("hello")


# ---------------------------------------------------------------------------
# Loader selection
# ---------------------------------------------------------------------------


class TestBuildModelLoader:
    @pytest.mark.asyncio
    async def test_openai_backend(self):
        settings = Settings(EMBEDDING_BACKEND="openai", OPENAI_API_KEY="sk-test", EMBEDDING_MODEL="text-embedding-3-small")

        model = await build_model_loader(settings)()

        assert isinstance(model, OpenAIEmbeddingModel)

    @pytest.mark.asyncio
    async def test_openai_backend_without_key_fails_to_load(self):
        settings = Settings(EMBEDDING_BACKEND="openai", OPENAI_API_KEY="")

        with pytest.raises(EmbeddingError):
            await build_model_loader(settings)()

    @pytest.mark.asyncio
    async def test_http_backend(self):
        settings = Settings(EMBEDDING_BACKEND="http", EMBEDDING_SERVICE_URL="http://embed.local")

        model = await build_model_loader(settings)()

        assert isinstance(model, HttpEmbeddingModel)

    @pytest.mark.asyncio
    async def test_http_backend_without_url_fails_to_load(self):
        settings = Settings(EMBEDDING_BACKEND="http", EMBEDDING_SERVICE_URL="")

        with pytest.raises(EmbeddingError):
            await build_model_loader(settings)()

    @pytest.mark.asyncio
    async def test_local_backend_uses_sentence_transformers(self):
        settings = Settings(EMBEDDING_BACKEND="local", EMBEDDING_MODEL="my-local-model")
        stub = types.ModuleType("sentence_transformers")
        stub.SentenceTransformer = _FakeSentenceTransformer

        with patch.dict(sys.modules, {"sentence_transformers": stub}):
            model = await build_model_loader(settings)()

        assert isinstance(model, SentenceTransformerModel)
        assert model._model.name == "my-local-model"

    @pytest.mark.asyncio
    async def test_misconfigured_backend_degrades_to_empty_vectors(self):
        settings = Settings(EMBEDDING_BACKEND="http", EMBEDDING_SERVICE_URL="")
        service = EmbeddingService(build_model_loader(settings))

        assert await service.embed_text("hello") == []

    @pytest.mark.asyncio
    async def test_openai_backend_uses_openai_default_model(self, monkeypatch):
        monkeypatch.delenv("EMBEDDING_MODEL", raising=False)
        settings = Settings(_env_file=None, EMBEDDING_BACKEND="openai", OPENAI_API_KEY="sk-test")

        model = await build_model_loader(settings)()

        assert model._model == "text-embedding-3-small"
