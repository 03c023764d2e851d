"""
Session Store: concurrent, TTL-evicted registry of processing jobs
═════════════════════════════════════════════════════════════════════

One SessionRecord per submission, keyed by an opaque uuid4 string.

Concurrency model:
  • A single threading.Lock guards a plain dict.  Session count is bounded
    by the TTL and every critical section is a dict operation, so contention
    stays low and per-record locks are not needed.
  • Readers (pollers) get an immutable SessionSnapshot copied under the lock.
  • Each record has one writer, its own pipeline task.  Writes that target a
    record which has been evicted are dropped with a warning; they never
    resurrect the record or raise.
  • A terminal status is final: update_status refuses to leave it.

Eviction:
  • Lazy: get() removes and reports an expired record as not found.
  • Periodic: a background thread started by start() calls sweep() every
    sweep_interval seconds; shutdown() stops and joins it.
  Records are evicted on age alone, whatever their status, so a session whose
  pipeline outlives the TTL simply becomes "not found" for its pollers.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable

from semsim.core.errors import SessionNotFound
from semsim.models.session import (
    FragmentVector,
    ProcessingStatus,
    SessionRecord,
    SessionSnapshot,
    SimilarityGroup,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS            = 60 * 60   # 60 minutes
DEFAULT_SWEEP_INTERVAL_SECONDS = 10 * 60   # 10 minutes


class SessionStore:
    """
    Owned, injectable session registry with an explicit start/shutdown lifecycle.

    Usage:
        store = SessionStore(ttl_seconds=3600, sweep_interval_seconds=600)
        store.start()
        sid = store.create()
        ...
        store.shutdown()
    """

    def __init__(
        self,
        ttl_seconds:            float = DEFAULT_TTL_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock:                  Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be positive")

        self._ttl            = ttl_seconds
        self._sweep_interval = sweep_interval_seconds
        self._clock          = clock

        self._sessions: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

        self._stop_event   = threading.Event()
        self._sweep_thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def sweep_interval_seconds(self) -> float:
        return self._sweep_interval

    @property
    def is_running(self) -> bool:
        return self._sweep_thread is not None and self._sweep_thread.is_alive()

    def start(self) -> None:
        """Start the periodic sweep thread (no-op if already running)."""
        if self.is_running:
            return
        logger.info(
            "SessionStore starting | ttl_s=%.0f sweep_interval_s=%.0f",
            self._ttl, self._sweep_interval,
        )
        self._stop_event.clear()
        self._sweep_thread = threading.Thread(
            target=self._sweep_loop,
            name="session-sweeper",
            daemon=True,
        )
        self._sweep_thread.start()

    def shutdown(self, timeout: float | None = 5.0) -> None:
        """Stop the sweep thread and wait for it to exit."""
        self._stop_event.set()
        thread, self._sweep_thread = self._sweep_thread, None
        if thread is not None:
            thread.join(timeout)
            logger.info("SessionStore stopped | remaining=%d", len(self))

    def __enter__(self) -> "SessionStore":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    def _sweep_loop(self) -> None:
        # Event.wait doubles as an interruptible sleep
        while not self._stop_event.wait(self._sweep_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("Session sweep failed")

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def create(self, threshold: float | None = None) -> str:
        """Allocate a new PROCESSING session and return its id."""
        record = SessionRecord(
            session_id=str(uuid.uuid4()),
            created_at=self._clock(),
            created_at_utc=datetime.now(timezone.utc),
            threshold=threshold,
        )
        with self._lock:
            # uuid4 collisions are astronomically unlikely; regenerate anyway
            while record.session_id in self._sessions:
                record.session_id = str(uuid.uuid4())
            self._sessions[record.session_id] = record

        logger.debug("Session created | session=%s", record.session_id)
        return record.session_id

    def get(self, session_id: str | None) -> SessionSnapshot:
        """
        Return a snapshot of the session.

        Raises:
            SessionNotFound if the id is unknown, removed or older than the TTL
            (an expired record is evicted on the way out).
        """
        if session_id is None:
            raise SessionNotFound(session_id)

        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                raise SessionNotFound(session_id)

            if record.is_expired(self._clock(), self._ttl):
                del self._sessions[session_id]
                logger.debug("Session expired on read | session=%s", session_id)
                raise SessionNotFound(session_id)

            return record.snapshot()

    def contains(self, session_id: str | None) -> bool:
        try:
            self.get(session_id)
        except SessionNotFound:
            return False
        return True

    def remove(self, session_id: str | None) -> None:
        """Explicit eviction.  Removing an unknown id is a no-op."""
        with self._lock:
            removed = self._sessions.pop(session_id, None) if session_id else None
        if removed is not None:
            logger.debug("Session removed | session=%s", session_id)

    def update_status(
        self,
        session_id:    str,
        status:        ProcessingStatus,
        error_message: str | None = None,
    ) -> bool:
        """
        Move a PROCESSING session to a terminal status.

        Returns False (and logs) when the session is gone or already terminal.
        """
        if not status.is_terminal:
            raise ValueError(f"Cannot transition a session to {status.value}")

        with self._lock:
            record = self._live_record(session_id)
            if record is None:
                logger.warning(
                    "Status update dropped, session evicted | session=%s status=%s",
                    session_id, status.value,
                )
                return False

            if record.status.is_terminal:
                logger.warning(
                    "Status update refused, session already terminal | session=%s "
                    "current=%s requested=%s",
                    session_id, record.status.value, status.value,
                )
                return False

            record.status        = status
            record.error_message = error_message

        logger.debug("Session status | session=%s status=%s", session_id, status.value)
        return True

    def attach_results(
        self,
        session_id: str,
        fragments:  Iterable[FragmentVector],
        groups:     Iterable[SimilarityGroup],
    ) -> bool:
        """
        Store the pipeline output on a PROCESSING session.

        Must be called before update_status(COMPLETED) so that results are
        in place by the time a poller can observe the terminal status.
        Returns False (and logs) when the session is gone or already terminal.
        """
        fragment_list = list(fragments)
        group_list    = [list(g) for g in groups]

        with self._lock:
            record = self._live_record(session_id)
            if record is None:
                logger.warning("Results dropped, session evicted | session=%s", session_id)
                return False

            if record.status.is_terminal:
                logger.warning(
                    "Results dropped, session already terminal | session=%s status=%s",
                    session_id, record.status.value,
                )
                return False

            record.fragments = fragment_list
            record.groups    = group_list

        return True

    def sweep(self) -> int:
        """Remove every record older than the TTL, whatever its status."""
        now = self._clock()
        with self._lock:
            expired = [
                sid for sid, record in self._sessions.items()
                if record.is_expired(now, self._ttl)
            ]
            for sid in expired:
                del self._sessions[sid]
            remaining = len(self._sessions)

        for sid in expired:
            logger.debug("Removing expired session | session=%s", sid)
        logger.info(
            "Session cleanup | removed=%d remaining=%d", len(expired), remaining,
        )
        return len(expired)

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _live_record(self, session_id: str) -> SessionRecord | None:
        """Caller must hold the lock.  Evicts and hides expired records."""
        record = self._sessions.get(session_id)
        if record is not None and record.is_expired(self._clock(), self._ttl):
            del self._sessions[session_id]
            return None
        return record
