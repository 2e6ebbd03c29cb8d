"""Lexical relevance scoring over note titles and plain text.

Scores are additive:

* the whole query appears in the title: +1.0
* the whole query appears in the body: +0.5
* for each query token longer than two characters,
  +0.3 if it appears in the title and +0.1 if it appears in the body.

Matching is case-insensitive substring matching; no model is involved.
Weights come from :mod:`notesearch.search.params`.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any, Protocol

from notesearch.search.params import get_search_params


class Rankable(Protocol):
    title: str
    plain_text: str


class KeywordRanker:
    """Deterministic keyword scorer.

    Args:
        params: Search parameters; defaults to :func:`get_search_params`.
    """

    def __init__(self, params: dict[str, Any] | None = None) -> None:
        self._params = params if params is not None else get_search_params()

    def score(self, query: str, note: Rankable) -> float:
        """Return the keyword relevance of *note* for *query* (0 when unrelated)."""
        lower_query = query.lower()
        if not lower_query.strip():
            return 0.0

        p = self._params
        title = (note.title or "").lower()
        body = (note.plain_text or "").lower()

        score = 0.0
        if lower_query in title:
            score += p["keyword_title_phrase_weight"]
        if lower_query in body:
            score += p["keyword_body_phrase_weight"]

        for token in self.tokenize(lower_query):
            if token in title:
                score += p["keyword_title_token_weight"]
            if token in body:
                score += p["keyword_body_token_weight"]

        return score

    def rank_all(
        self,
        query: str,
        notes: Iterable[Rankable],
        limit: int,
    ) -> list[tuple[Rankable, float]]:
        """Score every note, drop non-matches, and return the top *limit*.

        Sorting is stable, so notes with equal scores keep their input order.
        """
        scored = [(note, self.score(query, note)) for note in notes]
        matched = [pair for pair in scored if pair[1] > 0]
        matched.sort(key=lambda pair: pair[1], reverse=True)
        return matched[: max(limit, 0)]

    def tokenize(self, lower_query: str) -> Sequence[str]:
        min_len = int(self._params["keyword_min_token_length"])
        return [token for token in lower_query.split() if len(token) >= min_len]
