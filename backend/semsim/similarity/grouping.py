"""
Similarity Grouper: greedy single-pass clustering
════════════════════════════════════════════════════

Algorithm (order dependent, deterministic):
  1. Walk fragments in input order, skipping indices already consumed.
  2. The current fragment becomes the group's *reference* and opens a group.
  3. Every later, unconsumed fragment whose cosine similarity to the
     reference is >= threshold joins the group and is consumed.
  4. Groups with more than one member are always kept; singletons are kept
     only when keep_singletons is enabled.

Output order is the order in which references were met; members keep the
order in which they matched.

Membership is decided against the reference only, never transitively: two
members of one group are each similar to the reference but not necessarily to
each other.  This is a known simplification, not a defect.

Cost is O(n²) similarity computations, fine for the hundreds to low
thousands of fragments a single document yields.  Vectors are normalised
once per call and each reference is compared against all remaining
candidates in one numpy dot product.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from semsim.models.session import FragmentVector, SimilarityGroup
from semsim.similarity.vector_math import cosine_to_rows, unit_rows

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.75

_LOG_TEXT_MAX = 20


def validate_threshold(threshold: float | str) -> float:
    """Return threshold as float, or raise ValueError when non-numeric or outside [-1, 1]."""
    try:
        value = float(threshold)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Similarity threshold must be a number, got {threshold!r}") from exc
    if value != value or not -1.0 <= value <= 1.0:   # NaN check first
        raise ValueError(f"Similarity threshold must be within [-1, 1], got {threshold!r}")
    return value


def _truncate(text: str) -> str:
    if len(text) <= _LOG_TEXT_MAX:
        return text
    return text[:_LOG_TEXT_MAX] + "..."


class SimilarityGrouper:
    """
    Stateless grouper; one instance can be shared by all worker threads.

    Usage:
        grouper = SimilarityGrouper(threshold=0.75, keep_singletons=False)
        groups  = grouper.group(fragment_vectors)
    """

    def __init__(
        self,
        threshold:       float = DEFAULT_THRESHOLD,
        keep_singletons: bool  = False,
    ) -> None:
        self._threshold       = validate_threshold(threshold)
        self._keep_singletons = keep_singletons

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def keep_singletons(self) -> bool:
        return self._keep_singletons

    def group(
        self,
        fragments: Sequence[FragmentVector],
        threshold: float | None = None,
    ) -> list[SimilarityGroup]:
        """
        Cluster fragments around greedy reference fragments.

        Args:
            fragments : ordered (text, vector) pairs
            threshold : per-call override of the configured threshold

        Returns:
            Ordered list of groups, each an ordered list of fragment texts.
        """
        limit = self._threshold if threshold is None else validate_threshold(threshold)

        logger.debug(
            "Grouping | fragments=%d threshold=%.3f keep_singletons=%s",
            len(fragments), limit, self._keep_singletons,
        )

        groups: list[SimilarityGroup] = []
        if not fragments:
            logger.info("Grouping done | fragments=0 groups=0 threshold=%.3f", limit)
            return groups

        # Norms are computed once here; each comparison below is one dot product
        rows     = unit_rows([fragment.vector for fragment in fragments])
        consumed = np.zeros(len(fragments), dtype=bool)

        for i, reference in enumerate(fragments):
            if consumed[i]:
                continue

            members = [reference.text]
            consumed[i] = True

            # Later fragments only; consumed ones are masked out, never re-matched
            similarities = cosine_to_rows(rows[i + 1:], rows[i])
            hits = np.flatnonzero((similarities >= limit) & ~consumed[i + 1:])

            for offset in hits:
                j = i + 1 + int(offset)
                members.append(fragments[j].text)
                consumed[j] = True
                logger.debug(
                    "Match | similarity=%.4f reference=%r candidate=%r",
                    similarities[offset], _truncate(reference.text), _truncate(fragments[j].text),
                )

            if len(members) > 1 or self._keep_singletons:
                groups.append(members)

        logger.info(
            "Grouping done | fragments=%d groups=%d threshold=%.3f",
            len(fragments), len(groups), limit,
        )
        return groups
