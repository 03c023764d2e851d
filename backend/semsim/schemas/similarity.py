"""
Similarity API: Pydantic Request/Response Schemas

Covers the lifecycle of a submission:
  - Submission accepted (202) with the session id
  - Status polling body
  - All structured error bodies (400, 404, 500, 503)

Design decisions:
  - session_id is always server-generated (uuid4); the client only echoes it
    back through the session cookie.
  - processing_status is the async pipeline state, separate from HTTP status.
  - Completed results are returned as a bare JSON list of groups (each group
    an ordered list of fragment texts), not wrapped in an envelope.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from semsim.models.session import ProcessingStatus


# ---------------------------------------------------------------------------
# Success bodies
# ---------------------------------------------------------------------------

class SubmissionResponse(BaseModel):
    """Returned by POST /submissions (HTTP 202)."""
    message:    str = Field(..., description="Human-readable summary")
    session_id: str = Field(..., description="Server-generated session id (also set as cookie)")


class SessionStatusResponse(BaseModel):
    """Returned by GET /submissions/status."""
    session_id:        str
    processing_status: ProcessingStatus
    fragment_count:    int = Field(0, description="Fragments embedded (set once completed)")
    group_count:       int = Field(0, description="Similarity groups found (set once completed)")
    threshold:         float | None = Field(None, description="Per-submission threshold override")
    error_message:     str | None = None
    created_at:        datetime


class PendingResponse(BaseModel):
    """Returned with 202 while a session is still processing."""
    message:    str
    session_id: str


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error; may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    session_id: str | None        = Field(None, description="Session the error refers to, if any")
    request_id: str | None        = Field(None, description="Trace ID for log correlation")


# ---------------------------------------------------------------------------
# Pre-defined error factories (keeps route handlers thin)
# ---------------------------------------------------------------------------

class ApiErrors:
    """Factories for every documented error case."""

    @staticmethod
    def invalid_parameter(field: str, message: str) -> ErrorResponse:
        return ErrorResponse(
            error_code=f"INVALID_{field.upper()}",
            message="Error processing request.",
            details=[ErrorDetail(field=field, message=message, code=f"INVALID_{field.upper()}")],
        )

    @staticmethod
    def empty_document() -> ErrorResponse:
        return ErrorResponse(
            error_code="EMPTY_DOCUMENT",
            message="XML content is empty or invalid.",
            details=[
                ErrorDetail(
                    field="body",
                    message="The request body must contain an XML document.",
                    code="EMPTY_DOCUMENT",
                )
            ],
        )

    @staticmethod
    def invalid_document(detail: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="INVALID_DOCUMENT",
            message="The submitted document is not well-formed XML.",
            details=[ErrorDetail(field="body", message=detail, code="INVALID_DOCUMENT")],
        )

    @staticmethod
    def session_cookie_missing(cookie_name: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="SESSION_COOKIE_MISSING",
            message="Session cookie missing or invalid.",
            details=[
                ErrorDetail(
                    field=cookie_name,
                    message=f"Send the '{cookie_name}' cookie returned by POST /submissions.",
                    code="SESSION_COOKIE_MISSING",
                )
            ],
        )

    @staticmethod
    def session_not_found(session_id: str | None) -> ErrorResponse:
        return ErrorResponse(
            error_code="SESSION_NOT_FOUND",
            message="No results found for this session. It may have expired.",
            session_id=session_id,
        )

    @staticmethod
    def no_fragments_extracted(session_id: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="NO_FRAGMENTS_EXTRACTED",
            message=(
                "No text fragments were extracted. This may be because no matching elements "
                "were found in your XML. The default element is 'p'. If your XML uses different "
                "elements, specify them with the 'elements' query parameter, for example: "
                "/api/v1/submissions?elements=paragraph"
            ),
            details=[
                ErrorDetail(
                    field="elements",
                    message="No fragments found in XML. Revise the elements query parameter or check the data.",
                    code="NO_FRAGMENTS_EXTRACTED",
                )
            ],
            session_id=session_id,
        )

    @staticmethod
    def processing_error(session_id: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="PROCESSING_ERROR",
            message="An error occurred during processing. Please resubmit the document.",
            session_id=session_id,
        )

    @staticmethod
    def service_unavailable() -> ErrorResponse:
        return ErrorResponse(
            error_code="SERVICE_UNAVAILABLE",
            message="The service is shutting down and cannot accept submissions.",
        )

    @staticmethod
    def internal_error(request_id: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred. Our team has been notified.",
            details=[],
            request_id=request_id,
        )

