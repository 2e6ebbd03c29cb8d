"""Note indexer keeping stored embeddings in step with note text.

A note's embedding is computed from ``"{title}\\n\\n{plain_text}"`` and
stored on the note itself. It is replaced whole on every reindex, never
patched. Reindexing is triggered from outside (after an edit, or as a
backfill at startup / on demand); this module does not watch for changes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from notesearch.models import Note
from notesearch.search.embeddings import EmbeddingService
from notesearch.services.note_store import NoteStore

logger = logging.getLogger(__name__)


def build_embedding_text(note: Note) -> str:
    """Return the text a note is embedded from (empty if nothing to embed)."""
    return f"{note.title or ''}\n\n{note.plain_text or ''}".strip()


class KeyedLocks:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or awaits it.

    Shared by every :class:`NoteIndexer` in the process so writes for the
    same note never interleave, even across sessions.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __contains__(self, key: str) -> bool:
        return key in self._locks


class NoteIndexer:
    """Manages the embedding lifecycle for notes.

    Args:
        store: Note store for reading notes and writing embeddings.
        embedding_service: Shared service for generating embeddings.
        locks: Process-wide per-note lock registry. A private registry is
            created when omitted, which only serializes this instance.
        backfill_lock: Process-wide lock serializing backfill passes.
    """

    def __init__(
        self,
        store: NoteStore,
        embedding_service: EmbeddingService,
        locks: KeyedLocks | None = None,
        backfill_lock: asyncio.Lock | None = None,
    ) -> None:
        self._store = store
        self._embedding_service = embedding_service
        self._locks = locks if locks is not None else KeyedLocks()
        self._backfill_lock = backfill_lock if backfill_lock is not None else asyncio.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def reindex_one(self, note_id: str) -> bool:
        """Regenerate and store the embedding of a single note.

        The note is re-read under its lock, so the embedding is always
        computed from the latest committed text. Does nothing when the note
        does not exist, has no text, or the embedding could not be produced;
        an existing embedding is left in place in those cases.

        Returns:
            True if a new embedding was written.
        """
        return await self._reindex(note_id, only_if_missing=False)

    async def reindex_all_missing(self) -> int:
        """Embed every active note that has no embedding yet.

        Notes with neither title nor text are not selected. Notes are
        processed one after another, each write committed on its own, so
        edits and searches proceed while a pass runs. A note that gained an
        embedding elsewhere after the pass started is skipped. Only one
        backfill pass runs at a time; a second caller waits for the first
        to finish and then sees whatever is still missing.

        Returns:
            Number of notes processed (attempted), not only those that
            ended up with an embedding.
        """
        async with self._backfill_lock:
            # Notes without any text can never be embedded.
            notes = [note for note in await self._store.list_unindexed() if build_embedding_text(note)]
            if not notes:
                logger.debug("No unindexed notes")
                return 0

            logger.info("Backfilling embeddings for %d note(s)", len(notes))
            note_ids = [note.id for note in notes]
            written = 0
            for note_id in note_ids:
                if await self._reindex(note_id, only_if_missing=True):
                    written += 1

        logger.info("Backfill finished: %d processed, %d indexed", len(note_ids), written)
        return len(note_ids)

    async def needs_indexing(self, note_id: str) -> bool:
        """Return True if the note exists, is active and has no embedding."""
        note = await self._store.get_by_id(note_id, refresh=True)
        return note is not None and note.trashed_at is None and not note.embedding

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _reindex(self, note_id: str, *, only_if_missing: bool) -> bool:
        async with self._locks.hold(note_id):
            note = await self._store.get_by_id(note_id, refresh=True)
            if note is None:
                logger.debug("Note %s not found, skipping embedding", note_id)
                return False

            if only_if_missing and note.embedding:
                logger.debug("Note %s was indexed meanwhile, skipping", note_id)
                return False

            text = build_embedding_text(note)
            if not text:
                logger.debug("Note %s has no title or text, skipping embedding", note_id)
                return False

            embedding = await self._embedding_service.embed_text(text)
            if not embedding:
                logger.debug("No embedding produced for note %s", note_id)
                return False

            await self._store.update(note_id, embedding=embedding)
            await self._store.commit()

        logger.info("Indexed note %s (%d dims)", note_id, len(embedding))
        return True
