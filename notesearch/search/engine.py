"""Hybrid semantic + keyword search over the note store.

Semantic search: cosine similarity between the query embedding and each
note's stored embedding, computed in-process.
Keyword search: :class:`~notesearch.search.keyword.KeywordRanker`.
Hybrid search: semantic results are merged with keyword results; notes
found by both get a blended score, keyword-only notes are discounted.

When no note is indexed, or the query cannot be embedded, search falls
back to keyword ranking alone.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from notesearch.models import Note
from notesearch.search.embeddings import EmbeddingService
from notesearch.search.keyword import KeywordRanker
from notesearch.search.params import get_search_params
from notesearch.search.vectors import cosine_similarity
from notesearch.services.note_store import NoteStore

logger = logging.getLogger(__name__)

_SNIPPET_MAX_LENGTH = 200


def _dt_to_iso(dt: datetime | None) -> str | None:
    """Convert a datetime to ISO 8601 string, or None."""
    return dt.isoformat() if dt else None


def _truncate_snippet(text: str) -> str:
    text = (text or "").strip()
    if len(text) <= _SNIPPET_MAX_LENGTH:
        return text
    return text[:_SNIPPET_MAX_LENGTH] + "..."


class MatchType(StrEnum):
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    BOTH = "both"


class SearchResult(BaseModel):
    """A single ranked note.

    Attributes:
        note_id: ID of the matching note.
        title: Title of the note.
        snippet: Leading plain text of the note.
        score: Non-negative relevance score; higher is better.
        match_type: Which signal(s) found the note.
    """

    model_config = ConfigDict(frozen=True)

    note_id: str
    title: str
    snippet: str = ""
    score: float = Field(ge=0.0)
    match_type: MatchType
    updated_at: str | None = None

    @classmethod
    def from_note(cls, note: Note, score: float, match_type: MatchType) -> SearchResult:
        return cls(
            note_id=note.id,
            title=note.title or "",
            snippet=_truncate_snippet(note.plain_text),
            score=score,
            match_type=match_type,
            updated_at=_dt_to_iso(note.updated_at),
        )


class HybridSearchEngine:
    """Rank notes for a query by combining semantic and keyword signals.

    Args:
        store: Note store to read candidates from.
        embedding_service: Shared service used to embed the query.
        params: Search parameters; defaults to :func:`get_search_params`.
    """

    def __init__(
        self,
        store: NoteStore,
        embedding_service: EmbeddingService,
        params: dict[str, Any] | None = None,
    ) -> None:
        self._store = store
        self._embedding_service = embedding_service
        self._params = params if params is not None else get_search_params()
        self._keyword_ranker = KeywordRanker(self._params)

    async def search(self, query: str, limit: int = 10) -> list[SearchResult]:
        """Return up to *limit* notes ranked by relevance to *query*.

        Store errors propagate. Embedding failures do not: the query vector
        comes back empty and the search degrades to keyword ranking.
        """
        if not query or not query.strip():
            return []

        notes = await self._store.list_active()
        if not notes:
            return []

        query_vector = await self._embedding_service.embed_text(query)

        indexed = [note for note in notes if note.embedding]
        if query_vector:
            usable = [note for note in indexed if len(note.embedding) == len(query_vector)]
            if len(usable) != len(indexed):
                logger.warning(
                    "Skipping %d note(s) whose embedding dimension differs from the query (%d)",
                    len(indexed) - len(usable),
                    len(query_vector),
                )
            indexed = usable

        keyword_results = self.keyword_search(query, notes, limit)

        if not indexed or not query_vector:
            logger.debug(
                "Keyword-only search for %r (indexed=%d, query_embedded=%s)",
                query,
                len(indexed),
                bool(query_vector),
            )
            return keyword_results

        semantic_results = self.semantic_search(query_vector, indexed)
        merged = self.merge_results(semantic_results, keyword_results, self._params)
        return merged[: max(limit, 0)]

    def keyword_search(self, query: str, notes: Sequence[Note], limit: int) -> list[SearchResult]:
        """Rank *notes* lexically; every result is tagged ``keyword``."""
        return [
            SearchResult.from_note(note, score, MatchType.KEYWORD)
            for note, score in self._keyword_ranker.rank_all(query, notes, limit)
        ]

    @staticmethod
    def semantic_search(query_vector: Sequence[float], notes: Sequence[Note]) -> list[SearchResult]:
        """Score every indexed note against *query_vector*, best first.

        Negative similarities are clamped to zero so scores stay
        non-negative.
        """
        results = [
            SearchResult.from_note(
                note,
                max(cosine_similarity(query_vector, note.embedding), 0.0),
                MatchType.SEMANTIC,
            )
            for note in notes
        ]
        results.sort(key=lambda r: r.score, reverse=True)
        return results

    @staticmethod
    def merge_results(
        semantic_results: Sequence[SearchResult],
        keyword_results: Sequence[SearchResult],
        params: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        """Merge semantic and keyword results into one ranking.

        Every semantic result is kept. A keyword result for a note already
        present is blended into it (``semantic * 0.7 + keyword * 0.3``,
        tagged ``both``); a keyword-only note is added with its score
        discounted (``keyword * 0.5``). Inputs are not modified.

        Returns:
            A deduplicated list sorted by score descending.
        """
        p = params if params is not None else get_search_params()

        merged: dict[str, SearchResult] = {r.note_id: r for r in semantic_results}

        for result in keyword_results:
            existing = merged.get(result.note_id)
            if existing is not None:
                blended = existing.score * p["hybrid_semantic_weight"] + result.score * p["hybrid_keyword_weight"]
                merged[result.note_id] = existing.model_copy(update={"score": blended, "match_type": MatchType.BOTH})
            else:
                discounted = result.score * p["keyword_only_discount"]
                merged[result.note_id] = result.model_copy(update={"score": discounted, "match_type": MatchType.KEYWORD})

        return sorted(merged.values(), key=lambda r: r.score, reverse=True)
