"""
Exception taxonomy for the similarity pipeline.

Propagation rules:
  ValidationError, ParseError (at submit time)  →  raised to the caller, HTTP 400
  ParseError, EmbeddingFailure (in the pipeline) →  session status ERROR
  DimensionMismatch                              →  session status ERROR, logged CRITICAL
  SessionNotFound                                →  HTTP 404
  ResultsNotReady                                →  HTTP 202 / 400 / 500 by status
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from semsim.models.session import ProcessingStatus


class SemsimError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(SemsimError):
    """Request parameters failed a synchronous local check."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class ParseError(SemsimError):
    """The submitted document is not well-formed."""


class EmbeddingFailure(SemsimError):
    """The embedding provider could not produce a vector for a fragment."""


class DimensionMismatch(SemsimError):
    """Two vectors (or a vector and the configured size) differ in length."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class SessionNotFound(SemsimError):
    """Unknown, removed or expired session id."""

    def __init__(self, session_id: str | None) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class ResultsNotReady(SemsimError):
    """The session exists but has not reached COMPLETED."""

    def __init__(self, session_id: str, status: "ProcessingStatus") -> None:
        super().__init__(f"Results not available for session {session_id} (status={status.value})")
        self.session_id = session_id
        self.status = status
