"""Note persistence on top of an async SQLAlchemy session.

Search and indexing only need three operations (``get_by_id``,
``list_active``, ``update``); the rest is the note lifecycle used by the
HTTP layer (create, edit, trash, restore, purge, quick search).

Writes are flushed, not committed: the owner of the session decides when
to commit (the indexer commits each embedding write through :meth:`commit`
so the SQLite write lock is never held across a model call). Database
errors are not caught here.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from notesearch.models import EMPTY_DOCUMENT, Note, utcnow

logger = logging.getLogger(__name__)

# Fields whose change makes the stored embedding stale.
EMBEDDING_SOURCE_FIELDS = frozenset({"title", "plain_text"})

_EDITABLE_FIELDS = frozenset({"title", "content", "plain_text", "is_pinned", "tags"})


class NoteNotFoundError(LookupError):
    """Raised when a note-editing operation targets a missing note."""

    def __init__(self, note_id: str) -> None:
        super().__init__(f"Note {note_id} not found")
        self.note_id = note_id


class NoteStore:
    """Document store for notes.

    Args:
        session: An async SQLAlchemy session for database operations.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Search / indexing boundary
    # ------------------------------------------------------------------

    async def get_by_id(self, note_id: str, *, refresh: bool = False) -> Note | None:
        """Return the note, or None.

        With ``refresh=True`` the row is always re-read from the database,
        overwriting a copy already held by this session.
        """
        return await self._session.get(Note, note_id, populate_existing=refresh)

    async def list_active(self) -> list[Note]:
        """Return all non-trashed notes, most recently updated first."""
        stmt = select(Note).where(Note.trashed_at.is_(None)).order_by(Note.updated_at.desc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def update(self, note_id: str, **fields: Any) -> None:
        """Write *fields* onto a note in a single UPDATE statement.

        Unlike :meth:`update_note` this does not bump ``updated_at``; it is
        meant for derived data such as the embedding.
        """
        if not fields:
            return
        stmt = update(Note).where(Note.id == note_id).values(**fields)
        await self._session.execute(stmt)
        await self._session.flush()

    async def list_unindexed(self) -> list[Note]:
        """Return non-trashed notes whose embedding is missing or empty."""
        return [note for note in await self.list_active() if not note.embedding]

    async def commit(self) -> None:
        await self._session.commit()

    # ------------------------------------------------------------------
    # Note lifecycle
    # ------------------------------------------------------------------

    async def create(
        self,
        title: str = "Untitled",
        content: str | None = None,
        plain_text: str = "",
        tags: list[str] | None = None,
        is_pinned: bool = False,
    ) -> Note:
        now = utcnow()
        note = Note(
            title=title,
            content=content if content is not None else EMPTY_DOCUMENT,
            plain_text=plain_text,
            tags=list(tags or []),
            is_pinned=is_pinned,
            created_at=now,
            updated_at=now,
        )
        self._session.add(note)
        await self._session.flush()
        logger.debug("Created note %s", note.id)
        return note

    async def update_note(self, note_id: str, **changes: Any) -> bool:
        """Apply user edits to a note and bump ``updated_at``.

        Returns:
            True if the title or plain text actually changed, i.e. the
            note's embedding needs regenerating.

        Raises:
            NoteNotFoundError: If no note exists with the given ID.
            ValueError: If *changes* names a field that cannot be edited.
        """
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot edit note fields: {', '.join(sorted(unknown))}")

        note = await self._require(note_id)
        text_changed = any(
            getattr(note, name) != value for name, value in changes.items() if name in EMBEDDING_SOURCE_FIELDS
        )

        for name, value in changes.items():
            setattr(note, name, value)
        note.updated_at = utcnow()
        await self._session.flush()
        return text_changed

    async def trash(self, note_id: str) -> Note:
        note = await self._require(note_id)
        now = utcnow()
        note.trashed_at = now
        note.updated_at = now
        await self._session.flush()
        return note

    async def restore(self, note_id: str) -> Note:
        note = await self._require(note_id)
        note.trashed_at = None
        note.updated_at = utcnow()
        await self._session.flush()
        return note

    async def delete_permanently(self, note_id: str) -> bool:
        result = await self._session.execute(delete(Note).where(Note.id == note_id))
        await self._session.flush()
        return bool(result.rowcount)

    async def list_pinned(self) -> list[Note]:
        stmt = (
            select(Note)
            .where(Note.is_pinned.is_(True), Note.trashed_at.is_(None))
            .order_by(Note.updated_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def quick_search(self, query: str, limit: int | None = None) -> list[Note]:
        """Case-insensitive substring search over title and plain text.

        This is the cheap, model-free lookup used for a command palette;
        results are ordered newest first rather than by relevance. The query
        is matched literally and case-folded in Python, so ``%`` and ``_``
        carry no meaning and non-ASCII letters match in either case.
        """
        if not query.strip():
            return []

        needle = query.lower()
        matches = [
            note
            for note in await self.list_active()
            if needle in (note.title or "").lower() or needle in (note.plain_text or "").lower()
        ]
        return matches if limit is None else matches[: max(limit, 0)]

    async def count(self) -> tuple[int, int]:
        """Return ``(active_notes, indexed_notes)``."""
        active = await self.list_active()
        return len(active), sum(1 for note in active if note.embedding)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _require(self, note_id: str) -> Note:
        note = await self.get_by_id(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note
