"""Embedding service for converting text into vector embeddings.

Wraps an embedding model (see :mod:`notesearch.search.backends`) behind a
single ``embed_text`` coroutine. The model is loaded at most once per
service instance; concurrent callers during loading share one in-flight
load task. One service instance is created at application start and
passed to every consumer.

Embedding failures never propagate: ``embed_text`` logs them and returns
``[]``, which callers treat as "not embeddable" (the note stays unindexed,
a search falls back to keyword ranking).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Protocol

from notesearch.search.vectors import normalize

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 2000


class EmbeddingError(Exception):
    """Raised by an embedding backend when a model call fails."""


class EmbeddingModel(Protocol):
    """A loaded model that turns text into a vector."""

    async def encode(self, text: str) -> list[float]: ...


ModelLoader = Callable[[], Awaitable[EmbeddingModel]]


class ModelState(StrEnum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class EmbeddingService:
    """Generate unit-length vector embeddings for text.

    Parameters
    ----------
    loader : ModelLoader
        Coroutine function that loads and returns the model. Called at most
        once for the lifetime of the service.
    max_chars : int
        Only this many leading characters of the input are embedded.
    timeout : float | None
        Optional per-call limit, in seconds, on the model call. A timed-out
        call is treated like any other embedding failure.
    """

    def __init__(
        self,
        loader: ModelLoader,
        max_chars: int = DEFAULT_MAX_CHARS,
        timeout: float | None = None,
    ) -> None:
        self._loader = loader
        self._max_chars = max_chars
        self._timeout = timeout
        self._state = ModelState.UNINITIALIZED
        self._model: EmbeddingModel | None = None
        self._load_task: asyncio.Task[EmbeddingModel] | None = None

    @property
    def state(self) -> ModelState:
        return self._state

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed_text(self, text: str) -> list[float]:
        """Embed a single text string.

        Returns an empty list when *text* is empty or whitespace-only
        (without touching the model), and when the model is unavailable
        or fails for this call.
        """
        if not text or not text.strip():
            return []

        truncated = text[: self._max_chars]

        try:
            model = await self.get_model()
            if self._timeout is not None:
                raw = await asyncio.wait_for(model.encode(truncated), timeout=self._timeout)
            else:
                raw = await model.encode(truncated)
        except TimeoutError:
            logger.warning("Embedding timed out after %.1fs (%d chars)", self._timeout, len(truncated))
            return []
        except Exception as exc:
            logger.warning("Embedding unavailable: %s", exc)
            return []

        vector = normalize(raw)
        if not vector:
            logger.warning("Embedding model returned an empty or zero-norm vector")
        return vector

    async def get_model(self) -> EmbeddingModel:
        """Return the loaded model, loading it on first use.

        All callers that arrive while the model is loading await the same
        load task. If loading failed, every caller (current and future)
        receives the same exception.
        """
        if self._state is ModelState.READY and self._model is not None:
            return self._model

        task = self._ensure_loading()
        return await asyncio.shield(task)

    def preload(self) -> asyncio.Task[EmbeddingModel]:
        """Start loading the model in the background without waiting for it.

        Safe to call any number of times; only the first call (or the first
        ``embed_text``) starts a load. Must be called from a running event
        loop.
        """
        return self._ensure_loading()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_loading(self) -> asyncio.Task[EmbeddingModel]:
        if self._load_task is None:
            self._state = ModelState.LOADING
            self._load_task = asyncio.get_running_loop().create_task(self._load())
            self._load_task.add_done_callback(_consume_exception)
        return self._load_task

    async def _load(self) -> EmbeddingModel:
        logger.info("Loading embedding model")
        try:
            model = await self._loader()
        except Exception:
            self._state = ModelState.FAILED
            logger.exception("Embedding model failed to load")
            raise

        self._model = model
        self._state = ModelState.READY
        logger.info("Embedding model ready")
        return model


def _consume_exception(task: asyncio.Task) -> None:
    # A failed preload with no awaiting caller must not warn at shutdown.
    if not task.cancelled():
        task.exception()
