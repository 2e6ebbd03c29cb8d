"""Search API endpoints.

Provides:
- ``GET /search`` -- Hybrid semantic + keyword search over active notes.
- ``GET /search/quick`` -- Substring search for a command palette.
- ``POST /search/index`` -- Backfill embeddings for unindexed notes.
- ``GET /search/index/status`` -- Embedding index status.
- ``POST /search/index/{note_id}`` -- Re-embed a single note.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notesearch.api.deps import (
    IndexRuntime,
    get_embedding_service,
    get_index_runtime,
    get_session_factory,
)
from notesearch.database import get_db
from notesearch.search.embeddings import EmbeddingService
from notesearch.search.engine import HybridSearchEngine, SearchResult
from notesearch.search.indexer import NoteIndexer
from notesearch.services.note_store import NoteStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["search"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class SearchResponse(BaseModel):
    """Search API response containing results and metadata."""

    results: list[SearchResult]
    query: str
    total: int


class QuickSearchItem(BaseModel):
    note_id: str
    title: str
    updated_at: str | None = None


class QuickSearchResponse(BaseModel):
    results: list[QuickSearchItem]
    query: str


class IndexTriggerResponse(BaseModel):
    status: str
    message: str


class IndexStatusResponse(BaseModel):
    status: str
    total_notes: int
    indexed_notes: int
    pending_notes: int
    processed: int
    error_message: str | None = None


class ReindexNoteResponse(BaseModel):
    note_id: str
    indexed: bool


# ---------------------------------------------------------------------------
# Engine factory helpers (extracted for easy mocking in tests)
# ---------------------------------------------------------------------------


def _build_hybrid_engine(session: AsyncSession, embedding_service: EmbeddingService) -> HybridSearchEngine:
    return HybridSearchEngine(NoteStore(session), embedding_service)


def _build_indexer(
    session: AsyncSession,
    embedding_service: EmbeddingService,
    runtime: IndexRuntime,
) -> NoteIndexer:
    return NoteIndexer(
        NoteStore(session),
        embedding_service,
        locks=runtime.locks,
        backfill_lock=runtime.backfill_lock,
    )


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@router.get("", response_model=SearchResponse)
async def search(
    q: str = Query("", description="Search query"),  # noqa: B008
    limit: int = Query(10, ge=1, le=100, description="Maximum number of results"),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
    embedding_service: EmbeddingService = Depends(get_embedding_service),  # noqa: B008
) -> SearchResponse:
    """Search notes by meaning and keywords.

    A blank query returns no results. When embeddings are unavailable the
    results are keyword matches only.
    """
    logger.info("Search request: query=%r, limit=%d", q, limit)

    engine = _build_hybrid_engine(db, embedding_service)
    results = await engine.search(q, limit=limit)
    return SearchResponse(results=results, query=q, total=len(results))


@router.get("/quick", response_model=QuickSearchResponse)
async def quick_search(
    q: str = Query("", description="Substring to look for"),  # noqa: B008
    limit: int = Query(20, ge=1, le=100),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> QuickSearchResponse:
    """Case-insensitive substring search over titles and text, newest first."""
    notes = await NoteStore(db).quick_search(q, limit=limit)
    return QuickSearchResponse(
        results=[
            QuickSearchItem(
                note_id=note.id,
                title=note.title,
                updated_at=note.updated_at.isoformat() if note.updated_at else None,
            )
            for note in notes
        ],
        query=q,
    )


# ---------------------------------------------------------------------------
# Index management
# ---------------------------------------------------------------------------


async def run_index_background(
    runtime: IndexRuntime,
    session_factory: async_sessionmaker[AsyncSession],
    embedding_service: EmbeddingService,
) -> None:
    """Run one backfill pass in its own session and record the outcome."""
    state = runtime.state
    state.status = "indexing"
    state.is_indexing = True
    state.error_message = None
    state.processed = 0

    try:
        async with session_factory() as session:
            indexer = _build_indexer(session, embedding_service, runtime)
            state.processed = await indexer.reindex_all_missing()
            await session.commit()
        state.status = "completed"
    except Exception as exc:
        state.status = "error"
        state.error_message = str(exc)
        logger.exception("Indexing failed: %s", exc)
    finally:
        state.is_indexing = False


@router.post("/index", response_model=IndexTriggerResponse)
async def trigger_index(
    background_tasks: BackgroundTasks,
    runtime: IndexRuntime = Depends(get_index_runtime),  # noqa: B008
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
    embedding_service: EmbeddingService = Depends(get_embedding_service),  # noqa: B008
) -> IndexTriggerResponse:
    """Embed every note that has no embedding yet, in the background."""
    if runtime.state.is_indexing:
        return IndexTriggerResponse(status="already_indexing", message="Indexing is already running")

    runtime.state.is_indexing = True
    background_tasks.add_task(run_index_background, runtime, session_factory, embedding_service)
    return IndexTriggerResponse(status="indexing", message="Embedding unindexed notes...")


@router.get("/index/status", response_model=IndexStatusResponse)
async def get_index_status(
    runtime: IndexRuntime = Depends(get_index_runtime),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> IndexStatusResponse:
    """Get the current embedding index status."""
    total_notes, indexed_notes = await NoteStore(db).count()
    state = runtime.state
    return IndexStatusResponse(
        status=state.status,
        total_notes=total_notes,
        indexed_notes=indexed_notes,
        pending_notes=total_notes - indexed_notes,
        processed=state.processed,
        error_message=state.error_message,
    )


@router.post("/index/{note_id}", response_model=ReindexNoteResponse)
async def reindex_note(
    note_id: str,
    runtime: IndexRuntime = Depends(get_index_runtime),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
    embedding_service: EmbeddingService = Depends(get_embedding_service),  # noqa: B008
) -> ReindexNoteResponse:
    """Regenerate one note's embedding now."""
    indexer = _build_indexer(db, embedding_service, runtime)
    indexed = await indexer.reindex_one(note_id)
    return ReindexNoteResponse(note_id=note_id, indexed=indexed)
