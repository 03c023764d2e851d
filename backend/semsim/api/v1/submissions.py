"""
Similarity Submissions API Router

  POST   /api/v1/submissions            submit an XML document (202 + session cookie)
  GET    /api/v1/submissions/results    poll for similarity groups
  GET    /api/v1/submissions/status     poll for pipeline state + counts
  DELETE /api/v1/submissions            discard the session

Request lifecycle (POST):
  ┌─────────────────────────────────────────────────────────┐
  │ 1. Body must be non-blank              → 400 otherwise  │
  │ 2. elements / threshold validated      → 400 otherwise  │
  │ 3. XML well-formedness checked         → 400 otherwise  │
  │ 4. Session created, pipeline queued    → 202 + cookie   │
  └─────────────────────────────────────────────────────────┘

Polling (GET /results), by session state:
  unknown / expired        404
  processing               202
  no_fragments_extracted   400 (with guidance on ?elements=)
  error                    500
  completed                200 [[text, ...], ...]

The session id travels in an httpOnly cookie; the same id is echoed in the
JSON body of the 202 response.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import APIRouter, Query, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from semsim.api.dependencies import AppSettings, Orchestrator
from semsim.core.errors import ParseError, ResultsNotReady, SessionNotFound, ValidationError
from semsim.models.session import ProcessingStatus
from semsim.schemas.similarity import (
    ApiErrors,
    ErrorResponse,
    PendingResponse,
    SessionStatusResponse,
    SubmissionResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/submissions",
    tags=["Similarity"],
)


def _error(status_code: int, body: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# POST /submissions
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=SubmissionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit an XML document for similarity grouping",
    description=(
        "Returns 202 immediately; processing is asynchronous. "
        "Poll GET /submissions/results with the returned session cookie."
    ),
    responses={
        202: {"model": SubmissionResponse, "description": "Document accepted for processing"},
        400: {"model": ErrorResponse, "description": "Invalid elements, threshold or XML"},
        503: {"model": ErrorResponse, "description": "Service shutting down"},
    },
)
async def submit_document(
    request:      Request,
    orchestrator: Orchestrator,
    settings:     AppSettings,
    elements: Optional[str] = Query(
        None,
        description="Space-separated element names to extract text from (default: p)",
    ),
    threshold: Optional[str] = Query(
        None,
        description="Similarity threshold override in [-1, 1]",
    ),
) -> JSONResponse:
    body = await request.body()

    if not body.strip():
        logger.warning("Received empty XML content")
        return _error(status.HTTP_400_BAD_REQUEST, ApiErrors.empty_document())

    try:
        session_id = await run_in_threadpool(
            orchestrator.submit, body, elements, threshold,
        )
    except ValidationError as exc:
        logger.info("Submission rejected | field=%s reason=%s", exc.field, exc.message)
        return _error(
            status.HTTP_400_BAD_REQUEST,
            ApiErrors.invalid_parameter(exc.field, exc.message),
        )
    except ParseError as exc:
        logger.info("Submission rejected | invalid XML: %s", exc)
        return _error(status.HTTP_400_BAD_REQUEST, ApiErrors.invalid_document(str(exc)))
    except RuntimeError:
        logger.warning("Submission refused, orchestrator shut down")
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, ApiErrors.service_unavailable())

    response = JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=SubmissionResponse(
            message="Processing started. Results will be available for this session.",
            session_id=session_id,
        ).model_dump(mode="json"),
        headers={"Location": "/api/v1/submissions/results"},
    )
    response.set_cookie(
        key=settings.session_cookie_name,
        value=session_id,
        path="/",
        httponly=True,
    )
    return response


# ---------------------------------------------------------------------------
# GET /submissions/results
# ---------------------------------------------------------------------------

@router.get(
    "/results",
    summary="Poll for similarity groups",
    responses={
        200: {"description": "List of similarity groups (each a list of fragment texts)"},
        202: {"model": PendingResponse, "description": "Still processing"},
        400: {"model": ErrorResponse, "description": "Missing cookie or no fragments extracted"},
        404: {"model": ErrorResponse, "description": "Unknown or expired session"},
        500: {"model": ErrorResponse, "description": "Processing failed"},
    },
)
async def get_results(
    request:      Request,
    orchestrator: Orchestrator,
    settings:     AppSettings,
) -> JSONResponse:
    session_id = request.cookies.get(settings.session_cookie_name)
    if not session_id:
        logger.warning("Session cookie missing")
        return _error(
            status.HTTP_400_BAD_REQUEST,
            ApiErrors.session_cookie_missing(settings.session_cookie_name),
        )

    try:
        groups = orchestrator.get_results(session_id)
    except SessionNotFound:
        logger.info("No session found | session=%s", session_id)
        return _error(status.HTTP_404_NOT_FOUND, ApiErrors.session_not_found(session_id))
    except ResultsNotReady as exc:
        return _not_ready_response(exc)

    logger.info("Returning results | session=%s groups=%d", session_id, len(groups))
    return JSONResponse(status_code=status.HTTP_200_OK, content=groups)


def _pending(session_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=PendingResponse(
            message="Processing in progress. Please try again later.",
            session_id=session_id,
        ).model_dump(mode="json"),
    )


def _no_fragments(session_id: str) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, ApiErrors.no_fragments_extracted(session_id))


def _processing_error(session_id: str) -> JSONResponse:
    logger.warning("Processing error reported | session=%s", session_id)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, ApiErrors.processing_error(session_id))


# Every status except COMPLETED, which is the only one that yields results
NOT_READY_RESPONSES: dict[ProcessingStatus, Callable[[str], JSONResponse]] = {
    ProcessingStatus.PROCESSING:             _pending,
    ProcessingStatus.NO_FRAGMENTS_EXTRACTED: _no_fragments,
    ProcessingStatus.ERROR:                  _processing_error,
}


def _not_ready_response(exc: ResultsNotReady) -> JSONResponse:
    return NOT_READY_RESPONSES[exc.status](exc.session_id)


# ---------------------------------------------------------------------------
# GET /submissions/status
# ---------------------------------------------------------------------------

@router.get(
    "/status",
    response_model=SessionStatusResponse,
    summary="Poll async processing status",
    responses={
        200: {"model": SessionStatusResponse},
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def get_status(
    request:      Request,
    orchestrator: Orchestrator,
    settings:     AppSettings,
) -> JSONResponse:
    session_id = request.cookies.get(settings.session_cookie_name)
    if not session_id:
        return _error(
            status.HTTP_400_BAD_REQUEST,
            ApiErrors.session_cookie_missing(settings.session_cookie_name),
        )

    try:
        snapshot = orchestrator.get_session(session_id)
    except SessionNotFound:
        return _error(status.HTTP_404_NOT_FOUND, ApiErrors.session_not_found(session_id))

    body = SessionStatusResponse(
        session_id=snapshot.session_id,
        processing_status=snapshot.status,
        fragment_count=snapshot.fragment_count,
        group_count=snapshot.group_count,
        threshold=snapshot.threshold,
        error_message=snapshot.error_message,
        created_at=snapshot.created_at_utc,
    )
    return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# DELETE /submissions
# ---------------------------------------------------------------------------

@router.delete(
    "",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Discard the current session",
    responses={204: {"description": "Session discarded (idempotent)"}},
)
async def delete_session(
    request:      Request,
    orchestrator: Orchestrator,
    settings:     AppSettings,
) -> Response:
    session_id = request.cookies.get(settings.session_cookie_name)
    if session_id:
        orchestrator.remove(session_id)
        logger.info("Session discarded | session=%s", session_id)

    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(settings.session_cookie_name, path="/")
    return response
