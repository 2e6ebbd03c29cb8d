"""Embedding model backends.

Three ways to obtain vectors, selected by the ``EMBEDDING_BACKEND`` setting:

* **local** (default) -- a sentence-transformers model running in-process.
  Loading and encoding are blocking, so both run in a worker thread.
* **openai** -- the OpenAI embeddings endpoint.
* **http** -- a local embedding service exposing ``POST /embed`` that
  accepts ``{"input": [...], "dimensions": N}`` and returns
  ``{"embeddings": [[...], ...]}``.

Every backend raises :class:`EmbeddingError` on failure; the
:class:`~notesearch.search.embeddings.EmbeddingService` absorbs it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from openai import APIError, AsyncOpenAI

from notesearch.config import Settings
from notesearch.search.embeddings import EmbeddingError, EmbeddingModel, ModelLoader

logger = logging.getLogger(__name__)


class SentenceTransformerModel:
    """In-process sentence-transformers model (mean pooled, normalized)."""

    def __init__(self, model: Any) -> None:
        self._model = model

    async def encode(self, text: str) -> list[float]:
        try:
            output = await asyncio.to_thread(
                self._model.encode,
                text,
                normalize_embeddings=True,
            )
        except Exception as exc:
            raise EmbeddingError(str(exc)) from exc
        return [float(x) for x in output]


async def load_sentence_transformer(model_name: str) -> SentenceTransformerModel:
    """Load a sentence-transformers model without blocking the event loop."""
    from sentence_transformers import SentenceTransformer

    logger.info("Loading SentenceTransformer model: %s", model_name)
    model = await asyncio.to_thread(SentenceTransformer, model_name)
    return SentenceTransformerModel(model)


class OpenAIEmbeddingModel:
    """OpenAI embeddings API client.

    Parameters
    ----------
    api_key : str
        OpenAI API key.
    model : str
        Embedding model name (e.g. ``text-embedding-3-small``).
    dimensions : int | None
        Requested output dimensions, for models that support it.
    """

    def __init__(self, api_key: str, model: str, dimensions: int | None = None) -> None:
        self._client = AsyncOpenAI(api_key=api_key)
        self._model = model
        self._dimensions = dimensions

    async def encode(self, text: str) -> list[float]:
        kwargs: dict[str, Any] = {"input": [text], "model": self._model}
        if self._dimensions:
            kwargs["dimensions"] = self._dimensions

        try:
            response = await self._client.embeddings.create(**kwargs)
        except APIError as exc:
            logger.error("Embedding API error: %s", exc)
            raise EmbeddingError(str(exc)) from exc

        if not response.data:
            raise EmbeddingError("Embedding API returned no data")
        return list(response.data[0].embedding)


class HttpEmbeddingModel:
    """Client for a local HTTP embedding service."""

    def __init__(self, base_url: str, dimensions: int, timeout: float = 60.0) -> None:
        self._url = f"{base_url.rstrip('/')}/embed"
        self._dimensions = dimensions
        self._timeout = timeout

    async def encode(self, text: str) -> list[float]:
        payload = {"input": [text], "dimensions": self._dimensions}

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=payload)
                response.raise_for_status()
                data = response.json()
                return list(data["embeddings"][0])
        except httpx.HTTPStatusError as exc:
            logger.error("Local embedding HTTP error: %s", exc)
            raise EmbeddingError(str(exc)) from exc
        except httpx.RequestError as exc:
            logger.error("Local embedding request error: %s", exc)
            raise EmbeddingError(str(exc)) from exc
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            logger.error("Local embedding response parse error: %s", exc)
            raise EmbeddingError(f"Unexpected response from local embedding service: {exc}") from exc


def build_model_loader(settings: Settings) -> ModelLoader:
    """Return the model loader selected by ``settings.EMBEDDING_BACKEND``."""
    backend = settings.EMBEDDING_BACKEND

    if backend == "openai":

        async def load_openai() -> EmbeddingModel:
            if not settings.OPENAI_API_KEY:
                raise EmbeddingError("OPENAI_API_KEY is not configured")
            return OpenAIEmbeddingModel(
                api_key=settings.OPENAI_API_KEY,
                model=settings.embedding_model_name,
                dimensions=settings.EMBEDDING_DIMENSION,
            )

        return load_openai

    if backend == "http":

        async def load_http() -> EmbeddingModel:
            if not settings.EMBEDDING_SERVICE_URL:
                raise EmbeddingError("EMBEDDING_SERVICE_URL is not configured")
            logger.info("Using local embedding service at %s", settings.EMBEDDING_SERVICE_URL)
            return HttpEmbeddingModel(settings.EMBEDDING_SERVICE_URL, settings.EMBEDDING_DIMENSION)

        return load_http

    async def load_local() -> EmbeddingModel:
        return await load_sentence_transformer(settings.embedding_model_name)

    return load_local
