"""Vector math for embedding comparison.

Vectors are plain ``list[float]`` at the module boundary (that is how
they are stored and passed around); numpy is used internally.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return the cosine similarity of two equal-length vectors.

    Returns ``0.0`` instead of raising when the vectors differ in length,
    are empty, or either has zero magnitude.
    """
    if len(a) != len(b) or len(a) == 0:
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    magnitude = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if magnitude == 0.0:
        return 0.0

    return float(np.dot(va, vb) / magnitude)


def normalize(vector: Sequence[float]) -> list[float]:
    """Scale *vector* to unit length.

    Returns ``[]`` for an empty or zero-magnitude vector, which cannot be
    normalized.
    """
    if len(vector) == 0:
        return []

    arr = np.asarray(vector, dtype=np.float64)
    norm = float(np.linalg.norm(arr))
    if norm == 0.0 or not np.isfinite(norm):
        return []

    return (arr / norm).tolist()
