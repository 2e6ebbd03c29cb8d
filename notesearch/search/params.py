"""Centralized search parameter management.

The ranking constants (keyword weights, hybrid blend, keyword-only
discount) are heuristics kept as named defaults. Any of them can be
overridden through the ``SEARCH_PARAMS`` setting (a JSON object).

Usage in search engines::

    from notesearch.search.params import get_search_params
    params = get_search_params()
    blended = params["hybrid_semantic_weight"] * semantic + params["hybrid_keyword_weight"] * keyword
"""

from __future__ import annotations

from typing import Any

DEFAULT_SEARCH_PARAMS: dict[str, float | int] = {
    # Keyword ranker
    "keyword_title_phrase_weight": 1.0,
    "keyword_body_phrase_weight": 0.5,
    "keyword_title_token_weight": 0.3,
    "keyword_body_token_weight": 0.1,
    "keyword_min_token_length": 3,
    # Hybrid merge
    "hybrid_semantic_weight": 0.7,
    "hybrid_keyword_weight": 0.3,
    "keyword_only_discount": 0.5,
}


def get_search_params(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return current search parameters, merging overrides with defaults.

    When *overrides* is ``None`` the ``SEARCH_PARAMS`` setting is used.
    Keys that are not known parameters are ignored.
    """
    if overrides is None:
        from notesearch.config import get_settings

        overrides = get_settings().SEARCH_PARAMS

    merged = {**DEFAULT_SEARCH_PARAMS}
    if isinstance(overrides, dict):
        for key in DEFAULT_SEARCH_PARAMS:
            if key in overrides:
                merged[key] = overrides[key]
    return merged
