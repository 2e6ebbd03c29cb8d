"""Notes API endpoints.

Provides:
- ``GET /notes`` -- List active notes (optionally only pinned ones).
- ``POST /notes`` -- Create a note.
- ``GET /notes/{note_id}`` -- Fetch a note.
- ``PATCH /notes/{note_id}`` -- Edit a note; re-embeds it when its text changed.
- ``DELETE /notes/{note_id}`` -- Move a note to the trash.
- ``POST /notes/{note_id}/restore`` -- Restore a trashed note.
- ``DELETE /notes/{note_id}/permanent`` -- Delete a note for good.
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notesearch.api.deps import (
    IndexRuntime,
    get_embedding_service,
    get_index_runtime,
    get_session_factory,
)
from notesearch.database import get_db
from notesearch.models import Note
from notesearch.search.embeddings import EmbeddingService
from notesearch.search.indexer import NoteIndexer
from notesearch.services.note_store import NoteNotFoundError, NoteStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notes", tags=["notes"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class NoteCreate(BaseModel):
    title: str = "Untitled"
    content: str | None = None
    plain_text: str = ""
    tags: list[str] = []
    is_pinned: bool = False


class NoteUpdate(BaseModel):
    title: str | None = None
    content: str | None = None
    plain_text: str | None = None
    tags: list[str] | None = None
    is_pinned: bool | None = None


class NoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    content: str
    plain_text: str
    is_pinned: bool
    tags: list[str]
    is_indexed: bool
    created_at: datetime
    updated_at: datetime
    trashed_at: datetime | None = None


def _to_response(note: Note) -> NoteResponse:
    return NoteResponse.model_validate(note)


async def reindex_in_background(
    note_id: str,
    runtime: IndexRuntime,
    session_factory: async_sessionmaker[AsyncSession],
    embedding_service: EmbeddingService,
) -> None:
    """Re-embed one note in a fresh session after the request has finished."""
    try:
        async with session_factory() as session:
            indexer = NoteIndexer(
                NoteStore(session),
                embedding_service,
                locks=runtime.locks,
                backfill_lock=runtime.backfill_lock,
            )
            await indexer.reindex_one(note_id)
            await session.commit()
    except Exception:
        logger.exception("Background reindex failed for note %s", note_id)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=list[NoteResponse])
async def list_notes(
    pinned: bool = Query(False, description="Only pinned notes"),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> list[NoteResponse]:
    store = NoteStore(db)
    notes = await store.list_pinned() if pinned else await store.list_active()
    return [_to_response(note) for note in notes]


@router.post("", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
async def create_note(
    payload: NoteCreate,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> NoteResponse:
    note = await NoteStore(db).create(
        title=payload.title,
        content=payload.content,
        plain_text=payload.plain_text,
        tags=payload.tags,
        is_pinned=payload.is_pinned,
    )
    return _to_response(note)


@router.get("/{note_id}", response_model=NoteResponse)
async def get_note(
    note_id: str,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> NoteResponse:
    note = await NoteStore(db).get_by_id(note_id)
    if note is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Note not found")
    return _to_response(note)


@router.patch("/{note_id}", response_model=NoteResponse)
async def update_note(
    note_id: str,
    payload: NoteUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),  # noqa: B008
    runtime: IndexRuntime = Depends(get_index_runtime),  # noqa: B008
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),  # noqa: B008
    embedding_service: EmbeddingService = Depends(get_embedding_service),  # noqa: B008
) -> NoteResponse:
    """Apply edits; schedule a re-embed when the title or text changed."""
    store = NoteStore(db)
    changes = payload.model_dump(exclude_none=True)
    try:
        text_changed = await store.update_note(note_id, **changes)
    except NoteNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Note not found") from exc

    note = await store.get_by_id(note_id)
    response = _to_response(note)

    if text_changed:
        # The background session must see the edit.
        await db.commit()
        background_tasks.add_task(reindex_in_background, note_id, runtime, session_factory, embedding_service)

    return response


@router.delete("/{note_id}", response_model=NoteResponse)
async def trash_note(
    note_id: str,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> NoteResponse:
    try:
        note = await NoteStore(db).trash(note_id)
    except NoteNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Note not found") from exc
    return _to_response(note)


@router.post("/{note_id}/restore", response_model=NoteResponse)
async def restore_note(
    note_id: str,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> NoteResponse:
    try:
        note = await NoteStore(db).restore(note_id)
    except NoteNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Note not found") from exc
    return _to_response(note)


@router.delete("/{note_id}/permanent", status_code=status.HTTP_204_NO_CONTENT)
async def delete_note_permanently(
    note_id: str,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> None:
    if not await NoteStore(db).delete_permanently(note_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Note not found")
