"""
Unit Tests: session domain model, Settings, error envelopes
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from semsim.core.config import Settings
from semsim.models.session import FragmentVector, ProcessingStatus, SessionRecord
from semsim.schemas.similarity import ApiErrors


@pytest.mark.unit
class TestProcessingStatus:

    def test_only_processing_is_non_terminal(self):
        assert not ProcessingStatus.PROCESSING.is_terminal
        assert all(
            s.is_terminal for s in ProcessingStatus if s is not ProcessingStatus.PROCESSING
        )

    def test_every_status_has_an_http_mapping(self):
        from semsim.api.v1.submissions import NOT_READY_RESPONSES

        assert ProcessingStatus.COMPLETED not in NOT_READY_RESPONSES
        assert set(NOT_READY_RESPONSES) | {ProcessingStatus.COMPLETED} == set(ProcessingStatus)

    def test_wire_values(self):
        assert [s.value for s in ProcessingStatus] == [
            "processing", "completed", "error", "no_fragments_extracted",
        ]


@pytest.mark.unit
class TestFragmentVector:

    def test_vector_coerced_to_float_tuple(self):
        fragment = FragmentVector("text", [1, 2, 3])
        assert fragment.vector == (1.0, 2.0, 3.0)
        assert fragment.dimensions == 3

    def test_frozen(self):
        fragment = FragmentVector("text", (1.0,))
        with pytest.raises(AttributeError):
            fragment.text = "other"


@pytest.mark.unit
class TestSessionRecord:

    def test_expiry_is_strictly_after_ttl(self):
        record = SessionRecord("sid", created_at=100.0, created_at_utc=datetime.now(timezone.utc))
        assert not record.is_expired(160.0, 60)
        assert record.is_expired(160.5, 60)

    def test_snapshot_copies_groups(self):
        record = SessionRecord("sid", created_at=0.0, created_at_utc=datetime.now(timezone.utc))
        record.groups = [["a", "b"]]
        snapshot = record.snapshot()
        record.groups[0].append("c")

        assert snapshot.group_lists() == [["a", "b"]]


@pytest.mark.unit
class TestSettings:

    def test_defaults(self):
        settings = Settings(_env_file=None, similarity_threshold=0.75, embedding_backend="sentence-transformers")
        assert settings.similarity_threshold == 0.75
        assert settings.session_ttl_seconds == settings.session_ttl_minutes * 60
        assert settings.session_cookie_name == "session_id"

    def test_minutes_converted_to_seconds(self):
        settings = Settings(session_ttl_minutes=2, session_sweep_interval_minutes=0.5)
        assert settings.session_ttl_seconds == 120
        assert settings.session_sweep_interval_seconds == 30

    @pytest.mark.parametrize("field, value", [
        ("similarity_threshold", 1.5),
        ("worker_pool_size", 0),
        ("session_ttl_minutes", 0),
        ("embedding_dimensions", -1),
    ])
    def test_rejects_invalid(self, field, value):
        with pytest.raises(PydanticValidationError):
            Settings(**{field: value})

    def test_production_flag(self):
        assert Settings(app_env="production").is_production
        assert not Settings(app_env="development").is_production


@pytest.mark.unit
class TestApiErrors:

    def test_invalid_parameter_code(self):
        body = ApiErrors.invalid_parameter("elements", "bad")
        assert body.error_code == "INVALID_ELEMENTS"
        assert body.details[0].field == "elements"

    def test_no_fragments_mentions_elements_parameter(self):
        body = ApiErrors.no_fragments_extracted("sid")
        assert "elements" in body.message
        assert body.session_id == "sid"
