"""
Session domain model: processing state machine + per-session results.

State machine:
    PROCESSING → COMPLETED
    PROCESSING → ERROR
    PROCESSING → NO_FRAGMENTS_EXTRACTED

PROCESSING is assigned at creation and is the only non-terminal value.
A terminal status is final; SessionStore refuses any further transition.

SessionRecord is owned and mutated by SessionStore only.  Everything outside
the store sees a SessionSnapshot, an immutable copy taken under the store lock,
so a poller can never observe results and status out of step with each other.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ProcessingStatus(str, Enum):
    PROCESSING             = "processing"
    COMPLETED              = "completed"
    ERROR                  = "error"
    NO_FRAGMENTS_EXTRACTED = "no_fragments_extracted"

    @property
    def is_terminal(self) -> bool:
        return self is not ProcessingStatus.PROCESSING


@dataclass(frozen=True)
class FragmentVector:
    """One extracted fragment and its embedding."""
    text:   str
    vector: tuple[float, ...]

    def __post_init__(self) -> None:
        # Accept any sequence but always store an immutable tuple
        if not isinstance(self.vector, tuple):
            object.__setattr__(self, "vector", tuple(float(v) for v in self.vector))

    @property
    def dimensions(self) -> int:
        return len(self.vector)


# Ordered fragment texts judged similar to a common reference fragment.
SimilarityGroup = list[str]


@dataclass
class SessionRecord:
    """
    Mutable server-side state of one submission.

    created_at      : clock reading (monotonic seconds) used for TTL checks
    created_at_utc  : wall-clock creation time, reporting only
    threshold       : similarity threshold requested for this submission, or None for default
    """
    session_id:     str
    created_at:     float
    created_at_utc: datetime
    threshold:      float | None = None
    status:         ProcessingStatus = ProcessingStatus.PROCESSING
    fragments:      list[FragmentVector] = field(default_factory=list)
    groups:         list[SimilarityGroup] = field(default_factory=list)
    error_message:  str | None = None

    def age(self, now: float) -> float:
        return now - self.created_at

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return self.age(now) > ttl_seconds

    def snapshot(self) -> "SessionSnapshot":
        return SessionSnapshot(
            session_id=self.session_id,
            created_at=self.created_at,
            created_at_utc=self.created_at_utc,
            threshold=self.threshold,
            status=self.status,
            fragments=tuple(self.fragments),
            groups=tuple(tuple(g) for g in self.groups),
            error_message=self.error_message,
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a SessionRecord handed out to pollers."""
    session_id:     str
    created_at:     float
    created_at_utc: datetime
    threshold:      float | None
    status:         ProcessingStatus
    fragments:      tuple[FragmentVector, ...]
    groups:         tuple[tuple[str, ...], ...]
    error_message:  str | None

    @property
    def fragment_count(self) -> int:
        return len(self.fragments)

    @property
    def group_count(self) -> int:
        return len(self.groups)

    def group_lists(self) -> list[list[str]]:
        return [list(g) for g in self.groups]
