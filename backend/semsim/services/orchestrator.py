"""
Similarity Processing Orchestrator

Drives one submission through the pipeline:
  1. Validate selectors + threshold (synchronous, cheap, local)
  2. Parse the document (synchronous; a malformed document is rejected
     before any session exists, and the parsed root goes to the worker)
  3. Create the session (status=processing)
  4. Queue the pipeline on a bounded worker pool and return the session id

Pipeline task (worker thread):
  extract → embed → group → attach results → status=completed

  Zero fragments after extraction or embedding → status=no_fragments_extracted
  Any exception                                → status=error (logged, never re-raised)

Ordering invariant:
  Results are attached before the terminal status is written.  Both writes
  go through the SessionStore lock, so a poller that sees COMPLETED also sees
  the full results.

Task channel:
  Every queued pipeline is tracked by its Future.  A done-callback records any
  exception that escaped the task as status=error, so no failure is lost to a
  log line only.

Throttling:
  The pool has a fixed size (default 2); extra submissions wait in FIFO order.
  There is no cancellation: a started pipeline runs to completion even if its
  session has meanwhile been evicted, in which case its writes are dropped.
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from semsim.core.errors import (
    DimensionMismatch,
    ResultsNotReady,
    SessionNotFound,
    ValidationError,
)
from semsim.models.session import ProcessingStatus, SessionSnapshot
from semsim.processing.embeddings import EmbeddingProvider, embed_fragments
from semsim.processing.extractor import DEFAULT_SELECTORS, TextExtractor, validate_selectors
from semsim.sessions.store import SessionStore
from semsim.similarity.grouping import SimilarityGrouper, validate_threshold

logger = logging.getLogger(__name__)

DEFAULT_WORKER_POOL_SIZE = 2


class ProcessingOrchestrator:
    """
    Long-lived service object, one instance per application.
    All collaborators are injected (testable, no hidden globals).
    """

    def __init__(
        self,
        store:                SessionStore,
        extractor:            TextExtractor,
        embedder:             EmbeddingProvider,
        grouper:              SimilarityGrouper,
        max_workers:          int = DEFAULT_WORKER_POOL_SIZE,
        embedding_dimensions: int | None = None,
        zero_vector_fallback: bool = False,
        default_selectors:    str = DEFAULT_SELECTORS,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self._store                = store
        self._extractor            = extractor
        self._embedder             = embedder
        self._grouper              = grouper
        self._dimensions           = embedding_dimensions
        self._zero_vector_fallback = zero_vector_fallback
        self._default_selectors    = default_selectors
        self._max_workers          = max_workers

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="similarity-worker",
        )
        # session id → set once the task and its done-callback have both finished
        self._tasks: dict[str, threading.Event] = {}
        self._tasks_lock = threading.Lock()
        self._closed = False

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def embedder(self) -> EmbeddingProvider:
        return self._embedder

    @property
    def grouper(self) -> SimilarityGrouper:
        return self._grouper

    @property
    def max_workers(self) -> int:
        return self._max_workers

    @property
    def pending_tasks(self) -> int:
        with self._tasks_lock:
            return len(self._tasks)

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def submit(
        self,
        document:  bytes | str,
        selectors: str | None = None,
        threshold: float | str | None = None,
    ) -> str:
        """
        Validate the request, create a session and queue its pipeline.

        Returns immediately with the session id; poll get_status/get_results.

        Raises:
            ValidationError  bad selector list, non-numeric or out-of-range
                             threshold (no session created)
            ParseError       malformed document (no session created)
            RuntimeError     orchestrator already shut down
        """
        if self._closed:
            raise RuntimeError("ProcessingOrchestrator has been shut down")

        element_names = validate_selectors(selectors, default=self._default_selectors)

        if threshold is not None:
            try:
                threshold = validate_threshold(threshold)
            except (TypeError, ValueError) as exc:
                raise ValidationError("threshold", str(exc)) from exc

        parsed = self._extractor.parse(document)

        session_id = self._store.create(threshold=threshold)
        logger.info(
            "Submission accepted | session=%s elements=%s threshold=%s",
            session_id, " ".join(element_names),
            "default" if threshold is None else f"{threshold:.3f}",
        )

        try:
            future = self._executor.submit(
                self._run_pipeline, session_id, parsed, element_names, threshold,
            )
        except RuntimeError:
            # Pool shut down between the check above and here
            self._store.remove(session_id)
            raise

        finished = threading.Event()
        with self._tasks_lock:
            self._tasks[session_id] = finished
        future.add_done_callback(functools.partial(self._on_task_done, session_id, finished))

        return session_id

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def get_session(self, session_id: str | None) -> SessionSnapshot:
        """Raises SessionNotFound."""
        return self._store.get(session_id)

    def get_status(self, session_id: str | None) -> ProcessingStatus:
        """Raises SessionNotFound."""
        return self._store.get(session_id).status

    def get_results(self, session_id: str | None) -> list[list[str]]:
        """
        Return the similarity groups of a COMPLETED session.

        Raises:
            SessionNotFound  unknown or expired id
            ResultsNotReady  session exists but is not COMPLETED
        """
        snapshot = self._store.get(session_id)
        if snapshot.status is ProcessingStatus.COMPLETED:
            return snapshot.group_lists()
        raise ResultsNotReady(snapshot.session_id, snapshot.status)

    def remove(self, session_id: str | None) -> None:
        self._store.remove(session_id)

    def wait(self, session_id: str, timeout: float | None = None) -> ProcessingStatus:
        """
        Block until the session's pipeline task has finished (or timeout),
        then return the session status.

        Raises:
            SessionNotFound if the session is gone.
        """
        with self._tasks_lock:
            finished = self._tasks.get(session_id)
        if finished is not None:
            finished.wait(timeout)
        return self.get_status(session_id)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting submissions; optionally drain queued pipelines."""
        self._closed = True
        logger.info(
            "ProcessingOrchestrator shutting down | pending=%d wait=%s",
            self.pending_tasks, wait,
        )
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    # ------------------------------------------------------------------
    # Pipeline task
    # ------------------------------------------------------------------

    def _run_pipeline(
        self,
        session_id: str,
        parsed:     Any,
        selectors:  list[str],
        threshold:  float | None,
    ) -> ProcessingStatus | None:
        """Runs on a worker thread.  Never raises."""
        try:
            self._store.get(session_id)
        except SessionNotFound:
            logger.warning("Session evicted before processing started | session=%s", session_id)
            return None

        t0 = time.monotonic()
        try:
            # ── Step 1: extraction ────────────────────────────────────────
            texts = self._extractor.extract(parsed, selectors)
            logger.info("Extracted | session=%s fragments=%d", session_id, len(texts))
            if not texts:
                return self._finish_without_fragments(session_id)

            # ── Step 2: embedding ─────────────────────────────────────────
            fragments = embed_fragments(
                self._embedder,
                texts,
                expected_dimensions=self._dimensions,
                zero_vector_fallback=self._zero_vector_fallback,
            )
            if not fragments:
                return self._finish_without_fragments(session_id)

            # ── Step 3: grouping ──────────────────────────────────────────
            groups = self._grouper.group(fragments, threshold=threshold)

            # ── Step 4: results first, then the terminal status ───────────
            if not self._store.attach_results(session_id, fragments, groups):
                return None
            self._store.update_status(session_id, ProcessingStatus.COMPLETED)

            logger.info(
                "Processing complete | session=%s fragments=%d groups=%d elapsed_ms=%.0f",
                session_id, len(fragments), len(groups), (time.monotonic() - t0) * 1000,
            )
            return ProcessingStatus.COMPLETED

        except DimensionMismatch as exc:
            logger.critical(
                "Embedding dimension mismatch, check embedding configuration | session=%s: %s",
                session_id, exc,
            )
            self._fail(session_id, exc)
        except Exception as exc:
            logger.exception("Processing failed | session=%s", session_id)
            self._fail(session_id, exc)

        return ProcessingStatus.ERROR

    def _finish_without_fragments(self, session_id: str) -> ProcessingStatus:
        logger.warning("No fragments extracted | session=%s", session_id)
        self._store.update_status(session_id, ProcessingStatus.NO_FRAGMENTS_EXTRACTED)
        return ProcessingStatus.NO_FRAGMENTS_EXTRACTED

    def _fail(self, session_id: str, exc: BaseException) -> None:
        self._store.update_status(
            session_id,
            ProcessingStatus.ERROR,
            error_message=f"{type(exc).__name__}: {exc}",
        )

    def _on_task_done(self, session_id: str, finished: threading.Event, future: Future) -> None:
        try:
            if future.cancelled():
                logger.warning("Processing cancelled at shutdown | session=%s", session_id)
                self._store.update_status(
                    session_id, ProcessingStatus.ERROR, error_message="Processing cancelled",
                )
                return

            exc = future.exception()
            if exc is not None:
                logger.error(
                    "Pipeline task raised | session=%s error=%s", session_id, exc,
                    exc_info=exc,
                )
                self._store.update_status(
                    session_id, ProcessingStatus.ERROR, error_message=f"{type(exc).__name__}: {exc}",
                )
        finally:
            with self._tasks_lock:
                self._tasks.pop(session_id, None)
            finished.set()
