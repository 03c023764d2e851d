"""
FastAPI Application: Entry Point

Semantic similarity service: submit an XML document, poll for groups of
near-identical text fragments.

Architecture:
  - All routes are versioned under /api/v1/
  - One SessionStore + ProcessingOrchestrator per process, created in the
    lifespan and torn down on shutdown (sweep thread joined, pool drained)
  - Processing runs on a bounded worker pool, never on the event loop
  - Structured JSON error responses on all 4xx/5xx

Middleware stack (innermost → outermost):
  1. CORS: restrict to configured origins
  2. Gzip: compress responses > 1 KB
  3. Request ID + logging: X-Request-ID header and one log line per request
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from semsim.api.dependencies import Orchestrator
from semsim.api.v1.submissions import router as submissions_router
from semsim.core.config import Settings, settings as default_settings
from semsim.core.logging import configure_logging
from semsim.processing.embeddings import EmbeddingProvider, get_embedding_provider
from semsim.processing.extractor import XmlTextExtractor
from semsim.schemas.similarity import ApiErrors, ErrorDetail, ErrorResponse
from semsim.services.orchestrator import ProcessingOrchestrator
from semsim.sessions.store import SessionStore
from semsim.similarity.grouping import SimilarityGrouper

logger = logging.getLogger(__name__)

_PROBE_TEXT = "This is a test sentence for health check."


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------

def build_orchestrator(
    settings: Settings,
    embedder: EmbeddingProvider | None = None,
) -> ProcessingOrchestrator:
    """Wire store, extractor, embedder and grouper from settings."""
    store = SessionStore(
        ttl_seconds=settings.session_ttl_seconds,
        sweep_interval_seconds=settings.session_sweep_interval_seconds,
    )
    return ProcessingOrchestrator(
        store=store,
        extractor=XmlTextExtractor(),
        embedder=embedder or get_embedding_provider(settings),
        grouper=SimilarityGrouper(
            threshold=settings.similarity_threshold,
            keep_singletons=settings.keep_singleton_groups,
        ),
        max_workers=settings.worker_pool_size,
        embedding_dimensions=settings.embedding_dimensions,
        zero_vector_fallback=settings.embedding_zero_vector_fallback,
        default_selectors=settings.default_elements,
    )


# ---------------------------------------------------------------------------
# Application lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Run on startup: build the orchestrator, start the session sweep.
    Run on shutdown: stop the sweep thread, drain the worker pool.
    """
    settings: Settings = app.state.settings
    logger.info(
        "Starting similarity service | env=%s embedding_backend=%s threshold=%.2f workers=%d",
        settings.app_env, settings.embedding_backend,
        settings.similarity_threshold, settings.worker_pool_size,
    )

    orchestrator = build_orchestrator(settings)
    orchestrator.store.start()
    app.state.orchestrator = orchestrator

    yield

    logger.info("Shutting down similarity service")
    orchestrator.shutdown(wait=True)
    orchestrator.store.shutdown()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings)

    app = FastAPI(
        title="Semantic Similarity Service",
        description=(
            "Finds groups of near-identical text fragments in XML documents "
            "using sentence embeddings and cosine similarity."
        ),
        version="1.0.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order, last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.app_env == "development" else [],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "Location"],
    )

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "HTTP %s %s %d %.1fms",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers: uniform structured error responses
    # ----------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Convert FastAPI query validation errors to the ErrorResponse envelope."""
        details = [
            ErrorDetail(
                field=".".join(str(loc) for loc in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        body = ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Request validation failed.",
            details=details,
            request_id=request.headers.get("X-Request-ID"),
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=body.model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions; never expose stack traces."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ApiErrors.internal_error(request_id).model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(submissions_router, prefix="/api/v1")

    # ----------------------------------------------------------------
    # Health & readiness endpoints
    # ----------------------------------------------------------------

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Liveness probe",
        description="Returns 200 if the process is alive. No external checks.",
    )
    async def health() -> dict:
        return {"status": "ok", "service": "semsim-api"}

    @app.get(
        "/ready",
        tags=["Operations"],
        summary="Readiness probe",
        description="Returns 200 only if the embedding provider can embed a probe sentence.",
    )
    async def readiness(orchestrator: Orchestrator) -> JSONResponse:
        try:
            vector = await run_in_threadpool(orchestrator.embedder.embed, _PROBE_TEXT)
        except Exception as exc:
            logger.warning("Readiness check failed: %s", exc)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "embedding": f"{type(exc).__name__}: {exc}"},
            )

        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={
                "status":     "ready",
                "embedding":  {"dimensions": len(vector)},
                "sessions":   len(orchestrator.store),
            },
        )

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()


# ---------------------------------------------------------------------------
# Local development entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "semsim.main:app",
        host="0.0.0.0",
        port=8000,
        reload=default_settings.app_env == "development",
        log_level="debug" if default_settings.debug else "info",
        access_log=True,
    )
