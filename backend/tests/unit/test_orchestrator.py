"""
Unit Tests: ProcessingOrchestrator
══════════════════════════════════

Real SessionStore (fake clock), real XmlTextExtractor and SimilarityGrouper,
KeyedEmbeddingProvider from conftest.py in place of a model.

Coverage targets:
  ✅ Cats scenario end-to-end → one group, order preserved
  ✅ Singleton policy honoured end-to-end
  ✅ Per-submission threshold override
  ✅ Custom selectors
  ✅ Document parsed once, on the request path; the worker reuses the root
  ✅ Zero fragments → NO_FRAGMENTS_EXTRACTED, never COMPLETED with []
  ✅ Embedding failure → ERROR (strict) / COMPLETED (zero-vector fallback)
  ✅ Extraction failure inside the pipeline → ERROR
  ✅ DimensionMismatch → ERROR, logged CRITICAL
  ✅ Exception escaping the task → ERROR via done-callback
  ✅ Synchronous validation: no session created on bad input
  ✅ Session evicted mid-flight → writes dropped, nothing resurrected
  ✅ FIFO ordering with a single worker
  ✅ Submit after shutdown → RuntimeError
"""

from __future__ import annotations

import logging
import threading
from unittest.mock import MagicMock, patch
from xml.etree import ElementTree as ET

import pytest

from semsim.core.errors import ParseError, ResultsNotReady, SessionNotFound, ValidationError
from semsim.models.session import ProcessingStatus
from semsim.processing.extractor import XmlTextExtractor
from semsim.similarity.grouping import SimilarityGrouper
from tests.conftest import CATS_XML

WAIT_S = 10


# ─────────────────────────────────────────────────────────────────────────────
# Happy path
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestOrchestratorHappyPath:

    def test_cats_scenario(self, orchestrator):
        sid = orchestrator.submit(CATS_XML)

        assert orchestrator.wait(sid, WAIT_S) is ProcessingStatus.COMPLETED
        assert orchestrator.get_results(sid) == [["cats are great", "cats are wonderful"]]

    def test_cats_scenario_with_singletons(self, make_orchestrator):
        orch = make_orchestrator(grouper=SimilarityGrouper(threshold=0.75, keep_singletons=True))
        sid = orch.submit(CATS_XML)

        assert orch.wait(sid, WAIT_S) is ProcessingStatus.COMPLETED
        assert orch.get_results(sid) == [
            ["cats are great", "cats are wonderful"],
            ["the stock market fell"],
        ]

    def test_results_visible_with_completed_status(self, orchestrator):
        sid = orchestrator.submit(CATS_XML)
        orchestrator.wait(sid, WAIT_S)

        snapshot = orchestrator.get_session(sid)
        assert snapshot.status is ProcessingStatus.COMPLETED
        assert snapshot.fragment_count == 3
        assert snapshot.group_count == 1

    def test_threshold_override(self, orchestrator):
        sid = orchestrator.submit(CATS_XML, threshold=0.95)

        assert orchestrator.wait(sid, WAIT_S) is ProcessingStatus.COMPLETED
        assert orchestrator.get_results(sid) == []
        assert orchestrator.get_session(sid).threshold == 0.95

    def test_custom_selectors(self, orchestrator):
        xml = b"<doc><item>cats are great</item><p>ignored</p><item>cats are wonderful</item></doc>"
        sid = orchestrator.submit(xml, selectors="item")

        assert orchestrator.wait(sid, WAIT_S) is ProcessingStatus.COMPLETED
        assert orchestrator.get_results(sid) == [["cats are great", "cats are wonderful"]]

    def test_threshold_given_as_query_string(self, orchestrator):
        sid = orchestrator.submit(CATS_XML, threshold="0.95")

        assert orchestrator.wait(sid, WAIT_S) is ProcessingStatus.COMPLETED
        assert orchestrator.get_session(sid).threshold == 0.95

    def test_document_parsed_once(self, orchestrator):
        with patch.object(ET, "fromstring", wraps=ET.fromstring) as fromstring:
            sid = orchestrator.submit(CATS_XML)
            assert orchestrator.wait(sid, WAIT_S) is ProcessingStatus.COMPLETED

        assert fromstring.call_count == 1
        assert orchestrator.get_results(sid) == [["cats are great", "cats are wonderful"]]

    def test_default_selectors_configurable(self, make_orchestrator):
        orch = make_orchestrator(default_selectors="item")
        sid = orch.submit(b"<doc><item>cats are great</item><item>cats are wonderful</item></doc>")

        assert orch.wait(sid, WAIT_S) is ProcessingStatus.COMPLETED
        assert orch.get_results(sid) == [["cats are great", "cats are wonderful"]]

    def test_pending_tasks_drained(self, orchestrator):
        sid = orchestrator.submit(CATS_XML)
        orchestrator.wait(sid, WAIT_S)
        assert orchestrator.pending_tasks == 0

    def test_get_results_while_processing(self, make_orchestrator, make_embedder):
        gate = threading.Event()
        orch = make_orchestrator(embedder=make_embedder(gate=gate))
        sid = orch.submit(CATS_XML)
        try:
            with pytest.raises(ResultsNotReady) as exc_info:
                orch.get_results(sid)
            assert exc_info.value.status is ProcessingStatus.PROCESSING
        finally:
            gate.set()
        assert orch.wait(sid, WAIT_S) is ProcessingStatus.COMPLETED


# ─────────────────────────────────────────────────────────────────────────────
# Terminal non-success states
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestOrchestratorFailures:

    def test_no_fragments(self, orchestrator, cats_embedder):
        sid = orchestrator.submit(b"<doc><div>not a paragraph</div></doc>")

        assert orchestrator.wait(sid, WAIT_S) is ProcessingStatus.NO_FRAGMENTS_EXTRACTED
        with pytest.raises(ResultsNotReady) as exc_info:
            orchestrator.get_results(sid)
        assert exc_info.value.status is ProcessingStatus.NO_FRAGMENTS_EXTRACTED
        assert cats_embedder.calls == []

    def test_only_empty_elements(self, orchestrator):
        sid = orchestrator.submit(b"<doc><p>  </p><p/></doc>")
        assert orchestrator.wait(sid, WAIT_S) is ProcessingStatus.NO_FRAGMENTS_EXTRACTED

    def test_embedding_failure_fails_session(self, make_orchestrator, make_embedder):
        orch = make_orchestrator(embedder=make_embedder(fail_on=["cats are wonderful"]))
        sid = orch.submit(CATS_XML)

        assert orch.wait(sid, WAIT_S) is ProcessingStatus.ERROR
        assert orch.get_session(sid).error_message.startswith("EmbeddingFailure")
        with pytest.raises(ResultsNotReady):
            orch.get_results(sid)

    def test_zero_vector_fallback_completes(self, make_orchestrator, make_embedder):
        orch = make_orchestrator(
            embedder=make_embedder(fail_on=["cats are wonderful"]),
            zero_vector_fallback=True,
        )
        sid = orch.submit(CATS_XML)

        assert orch.wait(sid, WAIT_S) is ProcessingStatus.COMPLETED
        # The failed fragment matches nothing, the others are 0.1 apart
        assert orch.get_results(sid) == []

    def test_extraction_failure_in_pipeline(self, make_orchestrator):
        extractor = MagicMock(spec=XmlTextExtractor)
        extractor.extract.side_effect = ParseError("Invalid XML: truncated")
        orch = make_orchestrator(extractor=extractor)

        sid = orch.submit(CATS_XML)

        assert orch.wait(sid, WAIT_S) is ProcessingStatus.ERROR
        assert orch.get_session(sid).error_message == "ParseError: Invalid XML: truncated"

    def test_dimension_mismatch_logged_critical(self, make_orchestrator, cats_embedder, caplog):
        orch = make_orchestrator(embedding_dimensions=384)

        with caplog.at_level(logging.CRITICAL, logger="semsim.services.orchestrator"):
            sid = orch.submit(CATS_XML)
            assert orch.wait(sid, WAIT_S) is ProcessingStatus.ERROR

        assert orch.get_session(sid).error_message.startswith("DimensionMismatch")
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)

    def test_exception_escaping_task_recorded(self, orchestrator, monkeypatch):
        monkeypatch.setattr(
            orchestrator, "_run_pipeline", MagicMock(side_effect=RuntimeError("boom")),
        )
        sid = orchestrator.submit(CATS_XML)

        assert orchestrator.wait(sid, WAIT_S) is ProcessingStatus.ERROR
        assert orchestrator.get_session(sid).error_message == "RuntimeError: boom"


# ─────────────────────────────────────────────────────────────────────────────
# Synchronous validation
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestOrchestratorValidation:

    @pytest.mark.parametrize("selectors", ["", "1p", "p,div"])
    def test_bad_selectors_create_no_session(self, orchestrator, store, selectors):
        with pytest.raises(ValidationError) as exc_info:
            orchestrator.submit(CATS_XML, selectors=selectors)
        assert exc_info.value.field == "elements"
        assert len(store) == 0

    @pytest.mark.parametrize("threshold", [1.5, -2.0, float("nan"), "high", ""])
    def test_bad_threshold_creates_no_session(self, orchestrator, store, threshold):
        with pytest.raises(ValidationError) as exc_info:
            orchestrator.submit(CATS_XML, threshold=threshold)
        assert exc_info.value.field == "threshold"
        assert len(store) == 0

    @pytest.mark.parametrize("document", [b"<doc><p>unclosed</doc>", b"", b"plain text"])
    def test_malformed_document_creates_no_session(self, orchestrator, store, document):
        with pytest.raises(ParseError):
            orchestrator.submit(document)
        assert len(store) == 0

    def test_submit_after_shutdown(self, orchestrator, store):
        orchestrator.shutdown()
        with pytest.raises(RuntimeError):
            orchestrator.submit(CATS_XML)
        assert len(store) == 0

    def test_invalid_pool_size(self, make_orchestrator):
        with pytest.raises(ValueError):
            make_orchestrator(max_workers=0)

    def test_unknown_session(self, orchestrator):
        with pytest.raises(SessionNotFound):
            orchestrator.get_results("missing")
        with pytest.raises(SessionNotFound):
            orchestrator.get_status(None)


# ─────────────────────────────────────────────────────────────────────────────
# Concurrency: eviction mid-flight, FIFO pool
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestOrchestratorConcurrency:

    def test_removed_mid_flight_is_not_resurrected(self, make_orchestrator, make_embedder, store):
        gate = threading.Event()
        orch = make_orchestrator(embedder=make_embedder(gate=gate))

        sid = orch.submit(CATS_XML)
        orch.remove(sid)
        gate.set()

        with pytest.raises(SessionNotFound):
            orch.wait(sid, WAIT_S)
        assert len(store) == 0

    def test_expired_mid_flight_is_not_resurrected(
        self, make_orchestrator, make_embedder, store, fake_clock,
    ):
        gate = threading.Event()
        orch = make_orchestrator(embedder=make_embedder(gate=gate))

        sid = orch.submit(CATS_XML)
        fake_clock.advance(store.ttl_seconds + 1)
        gate.set()

        with pytest.raises(SessionNotFound):
            orch.wait(sid, WAIT_S)
        assert len(store) == 0

    def test_single_worker_runs_fifo(self, make_orchestrator, make_embedder):
        gate = threading.Event()
        embedder = make_embedder({}, default=(1.0, 0.0), gate=gate)
        orch = make_orchestrator(embedder=embedder, max_workers=1)

        ids = [orch.submit(f"<doc><p>doc {n}</p></doc>") for n in range(4)]
        assert orch.pending_tasks == 4
        gate.set()

        # One fragment per document, so every group is a dropped singleton
        for sid in ids:
            assert orch.wait(sid, WAIT_S) is ProcessingStatus.COMPLETED
            assert orch.get_results(sid) == []
        assert embedder.calls == ["doc 0", "doc 1", "doc 2", "doc 3"]

    def test_many_concurrent_submissions(self, make_orchestrator):
        orch = make_orchestrator(max_workers=4)
        ids = [orch.submit(CATS_XML) for _ in range(20)]

        for sid in ids:
            assert orch.wait(sid, WAIT_S) is ProcessingStatus.COMPLETED
            assert orch.get_results(sid) == [["cats are great", "cats are wonderful"]]
        assert len(set(ids)) == 20

    def test_shutdown_drains_queue(self, make_orchestrator, store):
        orch = make_orchestrator(max_workers=1)
        ids = [orch.submit(CATS_XML) for _ in range(3)]

        orch.shutdown(wait=True)

        for sid in ids:
            assert store.get(sid).status is ProcessingStatus.COMPLETED
