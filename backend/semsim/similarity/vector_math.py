"""
Vector math helpers.

cosine_similarity is pure: no shared state, safe from any worker thread.
unit_rows prepares a whole batch for repeated comparisons: each norm is
computed once, after which a cosine is a single dot product.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from semsim.core.errors import DimensionMismatch


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two equal-length vectors, in [-1, 1].

    A zero-magnitude vector is treated as maximally dissimilar: the result is
    0.0 rather than a division by zero (never NaN, never an exception).

    Raises:
        DimensionMismatch if len(a) != len(b).
    """
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))

    dot    = math.fsum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(math.fsum(x * x for x in a))
    norm_b = math.sqrt(math.fsum(y * y for y in b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    # Clamp rounding overshoot (e.g. 1.0000000000000002 for identical vectors)
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))


def unit_rows(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """
    Stack vectors into an (n, d) float64 matrix with every row scaled to unit
    length.

    Zero-magnitude rows stay all-zero, so their dot product with any row is
    0.0, the same answer cosine_similarity gives.

    Raises:
        DimensionMismatch if the vectors do not all have the same length.
    """
    if not vectors:
        return np.zeros((0, 0), dtype=np.float64)

    expected = len(vectors[0])
    for vector in vectors:
        if len(vector) != expected:
            raise DimensionMismatch(expected, len(vector))

    matrix = np.asarray(vectors, dtype=np.float64).reshape(len(vectors), expected)
    norms  = np.linalg.norm(matrix, axis=1, keepdims=True)
    return np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms != 0)


def cosine_to_rows(rows: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """Cosine of each unit row against a unit reference row, clamped to [-1, 1]."""
    return np.clip(rows @ reference, -1.0, 1.0)
