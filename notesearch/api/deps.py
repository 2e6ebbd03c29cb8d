"""Shared FastAPI dependencies.

The embedding service and the indexing runtime are created once in the
application lifespan and kept on ``app.state``; routes receive them
through these dependencies so tests can swap them out.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notesearch.database import async_session_factory
from notesearch.search.embeddings import EmbeddingService
from notesearch.search.indexer import KeyedLocks


@dataclass
class IndexState:
    status: str = "idle"
    is_indexing: bool = False
    processed: int = 0
    error_message: str | None = None


@dataclass
class IndexRuntime:
    """Process-wide indexing coordination shared by every request."""

    locks: KeyedLocks = field(default_factory=KeyedLocks)
    backfill_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    state: IndexState = field(default_factory=IndexState)


def get_embedding_service(request: Request) -> EmbeddingService:
    return request.app.state.embedding_service


def get_index_runtime(request: Request) -> IndexRuntime:
    return request.app.state.index_runtime


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that outlives the request (background tasks)."""
    return async_session_factory
