"""
Root conftest.py: shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  function-scoped : fake_clock, store, grouper, extractor, make_embedder,
                    make_orchestrator, orchestrator, app_with_overrides,
                    async_client

Environment strategy:
  - Settings are pinned to the "hash" embedding backend so no model is ever
    downloaded and no network call is made.
  - Session TTL is driven by FakeClock, never by real sleeps.
  - Orchestrators created through make_orchestrator are shut down (pool
    drained) at teardown.

How to run:
  pytest                                    # all tests
  pytest -m unit                            # unit tests only (fast, no I/O)
  pytest -m integration                     # FastAPI routing stack
  pytest backend/tests/unit/test_grouping.py  # single file
"""

from __future__ import annotations

import math
import os
import threading
from typing import AsyncGenerator, Sequence

import pytest
import pytest_asyncio
from httpx import AsyncClient

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any app imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("EMBEDDING_BACKEND",     "hash")
os.environ.setdefault("EMBEDDING_DIMENSIONS",  "64")
os.environ.setdefault("SIMILARITY_THRESHOLD",  "0.75")
os.environ.setdefault("KEEP_SINGLETON_GROUPS", "false")
os.environ.setdefault("WORKER_POOL_SIZE",      "2")
os.environ.setdefault("APP_ENV",               "development")
os.environ.setdefault("DEBUG",                 "false")


# ─────────────────────────────────────────────────────────────────────────────
# Test doubles
# ─────────────────────────────────────────────────────────────────────────────

class FakeClock:
    """Monotonic clock stand-in; advance() moves time forward."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def unit_vector(angle_cos: float) -> tuple[float, float]:
    """2-D unit vector whose cosine similarity to (1, 0) is angle_cos."""
    return (angle_cos, math.sqrt(1.0 - angle_cos * angle_cos))


class KeyedEmbeddingProvider:
    """
    Fake EmbeddingProvider: returns a fixed vector per known text.

    Unknown texts get `default` (or raise KeyError when default is None).
    Texts listed in `fail_on` raise RuntimeError.  An optional `gate` event
    blocks every call until set, to hold a pipeline mid-flight.
    """

    def __init__(
        self,
        vectors:    dict[str, Sequence[float]],
        dimensions: int = 2,
        default:    Sequence[float] | None = None,
        fail_on:    Sequence[str] = (),
        gate:       threading.Event | None = None,
    ) -> None:
        self._vectors    = {k: list(v) for k, v in vectors.items()}
        self._dimensions = dimensions
        self._default    = list(default) if default is not None else None
        self._fail_on    = set(fail_on)
        self._gate       = gate
        self.calls: list[str] = []

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed(self, text: str) -> list[float]:
        if self._gate is not None:
            self._gate.wait(timeout=10)
        self.calls.append(text)
        if text in self._fail_on:
            raise RuntimeError(f"model refused: {text}")
        if text in self._vectors:
            return list(self._vectors[text])
        if self._default is None:
            raise KeyError(text)
        return list(self._default)

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        return [self.embed(text) for text in texts]


# First two at cosine 0.9, third at 0.1 to the first
CATS_VECTORS = {
    "cats are great":        (1.0, 0.0),
    "cats are wonderful":    unit_vector(0.9),
    "the stock market fell": unit_vector(0.1),
}

CATS_XML = (
    b"<doc>"
    b"<p>cats are great</p>"
    b"<p>cats are wonderful</p>"
    b"<p>the stock market fell</p>"
    b"</doc>"
)


# ─────────────────────────────────────────────────────────────────────────────
# Core component fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(fake_clock):
    """SessionStore with a 60 s TTL on the fake clock (sweep thread not started)."""
    from semsim.sessions.store import SessionStore
    return SessionStore(ttl_seconds=60, sweep_interval_seconds=30, clock=fake_clock)


@pytest.fixture
def grouper():
    from semsim.similarity.grouping import SimilarityGrouper
    return SimilarityGrouper(threshold=0.75, keep_singletons=False)


@pytest.fixture
def extractor():
    from semsim.processing.extractor import XmlTextExtractor
    return XmlTextExtractor()


@pytest.fixture
def make_embedder():
    """Factory fixture: build a KeyedEmbeddingProvider."""
    def _build(vectors=None, **kwargs) -> KeyedEmbeddingProvider:
        return KeyedEmbeddingProvider(vectors if vectors is not None else CATS_VECTORS, **kwargs)
    return _build


@pytest.fixture
def cats_embedder(make_embedder) -> KeyedEmbeddingProvider:
    return make_embedder()


@pytest.fixture
def make_orchestrator(store, extractor, grouper, cats_embedder):
    """
    Factory fixture: build a ProcessingOrchestrator with injected collaborators.

    Usage:
        orch = make_orchestrator()
        orch = make_orchestrator(embedder=my_fake, max_workers=1)
    """
    from semsim.services.orchestrator import ProcessingOrchestrator

    created: list[ProcessingOrchestrator] = []

    def _build(**overrides) -> ProcessingOrchestrator:
        kwargs = {
            "store":     store,
            "extractor": extractor,
            "embedder":  cats_embedder,
            "grouper":   grouper,
        }
        kwargs.update(overrides)
        orch = ProcessingOrchestrator(**kwargs)
        created.append(orch)
        return orch

    yield _build

    for orch in created:
        orch.shutdown(wait=True)


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


# ─────────────────────────────────────────────────────────────────────────────
# FastAPI test client with orchestrator dependency override
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def app_with_overrides(orchestrator):
    """
    FastAPI app with the orchestrator dependency overridden.

    ASGITransport does not run the lifespan, so the orchestrator built by the
    fixtures above is the only one the routes ever see.
    """
    from semsim.api.dependencies import get_orchestrator
    from semsim.main import app

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def async_client(app_with_overrides) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client using the overridden app."""
    from httpx import ASGITransport
    transport = ASGITransport(app=app_with_overrides)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
