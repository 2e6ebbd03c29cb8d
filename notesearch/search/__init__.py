"""Search engine package for hybrid semantic and keyword search."""

from notesearch.search.embeddings import EmbeddingError, EmbeddingService, ModelState
from notesearch.search.engine import HybridSearchEngine, MatchType, SearchResult
from notesearch.search.indexer import KeyedLocks, NoteIndexer
from notesearch.search.keyword import KeywordRanker
from notesearch.search.vectors import cosine_similarity

__all__ = [
    "EmbeddingError",
    "EmbeddingService",
    "HybridSearchEngine",
    "KeyedLocks",
    "KeywordRanker",
    "MatchType",
    "ModelState",
    "NoteIndexer",
    "SearchResult",
    "cosine_similarity",
]
