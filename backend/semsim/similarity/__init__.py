"""
Similarity Package
══════════════════

  vector_math.py  cosine similarity with the zero-vector policy
  grouping.py     greedy reference-based clustering of fragment vectors
"""

from semsim.similarity.grouping import DEFAULT_THRESHOLD, SimilarityGrouper, validate_threshold
from semsim.similarity.vector_math import cosine_similarity

__all__ = [
    "DEFAULT_THRESHOLD",
    "SimilarityGrouper",
    "cosine_similarity",
    "validate_threshold",
]
