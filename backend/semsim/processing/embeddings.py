"""
Embedding Providers: fragment text → fixed-length vector
═══════════════════════════════════════════════════════════

Backends (selected by settings.embedding_backend):
  sentence-transformers  local all-MiniLM-L6-v2 (384 dims), L2-normalised  (default)
  openai                 OpenAI embeddings API, batched, retried on transient errors
  hash                   deterministic feature-hashing bag-of-words; no model download,
                         used for local development and readiness probes

Contract shared by every backend:
  • embed(text) returns exactly `dimensions` floats, pre-normalised to unit
    L2 norm.  The grouper does not re-normalise.
  • Providers are called from pipeline worker threads and must be thread-safe.
  • Failures raise.  A failure is never silently converted into a zero vector
    here; embed_fragments() decides the policy for the whole session.

Retry policy (openai backend):
  On RateLimitError / APIError (5xx) / connection errors
                             → wait RETRY_BASE_DELAY × 2^attempt (capped)
  On AuthenticationError / BadRequestError → fail immediately (not transient)
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
import threading
import time
from abc import ABC, abstractmethod
from typing import Sequence

from semsim.core.config import Settings, get_settings
from semsim.core.errors import DimensionMismatch, EmbeddingFailure
from semsim.models.session import FragmentVector

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

EMBEDDING_BATCH_SIZE = 100    # texts per OpenAI API call
MAX_RETRIES          = 3      # per-batch retry limit
RETRY_BASE_DELAY     = 2.0    # seconds, doubles each retry
RETRY_MAX_DELAY      = 60.0   # cap

_NON_RETRYABLE_ERRORS = frozenset({
    "AuthenticationError",
    "BadRequestError",
    "PermissionDeniedError",
    "NotFoundError",
})

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)

# Used when EMBEDDING_MODEL is left empty
DEFAULT_EMBEDDING_MODELS = {
    "sentence-transformers": "all-MiniLM-L6-v2",
    "openai":                "text-embedding-3-small",
}


# ---------------------------------------------------------------------------
# Provider interface
# ---------------------------------------------------------------------------

class EmbeddingProvider(ABC):
    """Abstract text → vector model."""

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Length of every vector this provider returns."""

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Embed a single text."""

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed many texts; backends override this when the model batches natively."""
        return [self.embed(text) for text in texts]


# ---------------------------------------------------------------------------
# sentence-transformers (local model)
# ---------------------------------------------------------------------------

class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """
    Local sentence-transformers model, loaded lazily on first use.

    Embeddings are requested with normalize_embeddings=True so every vector
    has unit length.
    """

    def __init__(
        self,
        model_name: str = "all-MiniLM-L6-v2",
        dimensions: int = 384,
        batch_size: int = 32,
    ) -> None:
        self._model_name = model_name
        self._dimensions = dimensions
        self._batch_size = batch_size
        self._model      = None
        self._load_lock  = threading.Lock()

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def model(self):
        if self._model is None:
            with self._load_lock:
                if self._model is None:
                    from sentence_transformers import SentenceTransformer

                    logger.info("Loading sentence-transformers model | model=%s", self._model_name)
                    self._model = SentenceTransformer(self._model_name)
        return self._model

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        t0 = time.monotonic()
        embeddings = self.model.encode(
            list(texts),
            batch_size=self._batch_size,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        logger.debug(
            "sentence-transformers | texts=%d elapsed_ms=%.0f",
            len(texts), (time.monotonic() - t0) * 1000,
        )
        return embeddings.tolist()


# ---------------------------------------------------------------------------
# OpenAI embeddings API
# ---------------------------------------------------------------------------

class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    Batched OpenAI embeddings with exponential back-off.

    OpenAI returns unit-length vectors for its embedding models, so no
    normalisation is applied here.
    """

    def __init__(
        self,
        model:      str = "text-embedding-3-small",
        dimensions: int = 1536,
        api_key:    str = "",
        client=None,
    ) -> None:
        self._model      = model
        self._dimensions = dimensions
        self._api_key    = api_key
        self._client     = client

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def client(self):
        if self._client is None:
            from openai import OpenAI
            self._client = OpenAI(api_key=self._api_key or None)
        return self._client

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for batch_idx, start in enumerate(range(0, len(texts), EMBEDDING_BATCH_SIZE)):
            batch = list(texts[start : start + EMBEDDING_BATCH_SIZE])
            vectors.extend(self._embed_batch_with_retry(batch, batch_idx))
        return vectors

    def _embed_batch_with_retry(self, batch: list[str], batch_idx: int) -> list[list[float]]:
        last_error: Exception | None = None

        for attempt in range(MAX_RETRIES + 1):
            if attempt > 0:
                delay = min(RETRY_BASE_DELAY * (2 ** (attempt - 1)), RETRY_MAX_DELAY)
                logger.warning(
                    "Embedding retry | batch=%d attempt=%d delay=%.1fs error=%s",
                    batch_idx, attempt, delay, last_error,
                )
                time.sleep(delay)

            try:
                return self._call_openai(batch, batch_idx)
            except Exception as exc:
                last_error = exc
                error_name = type(exc).__name__

                if error_name in _NON_RETRYABLE_ERRORS:
                    logger.error("Non-retryable embedding error batch=%d: %s", batch_idx, exc)
                    raise

                logger.warning(
                    "Retryable embedding error batch=%d attempt=%d: %s %s",
                    batch_idx, attempt, error_name, exc,
                )

        raise last_error or RuntimeError(
            f"Embedding batch {batch_idx} failed after {MAX_RETRIES} retries"
        )

    def _call_openai(self, batch: list[str], batch_idx: int) -> list[list[float]]:
        kwargs: dict = {"model": self._model, "input": batch}
        # The dimensions parameter is only accepted by text-embedding-3-* models
        if self._model.startswith("text-embedding-3"):
            kwargs["dimensions"] = self._dimensions

        t_api = time.monotonic()
        response = self.client.embeddings.create(**kwargs)
        api_ms = (time.monotonic() - t_api) * 1000

        logger.debug(
            "OpenAI embeddings | batch=%d size=%d tokens=%s api_ms=%.0f",
            batch_idx, len(batch),
            response.usage.total_tokens if response.usage else "?", api_ms,
        )
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]


# ---------------------------------------------------------------------------
# Deterministic hashing embedder
# ---------------------------------------------------------------------------

class HashEmbeddingProvider(EmbeddingProvider):
    """
    Feature-hashing bag-of-words embedding.

    Each lower-cased token is hashed into one of `dimensions` buckets with a
    ±1 sign; the result is L2-normalised.  Texts sharing many tokens get a
    high cosine similarity, which is enough for development and smoke tests.
    A text without tokens yields the zero vector.
    """

    def __init__(self, dimensions: int = 384) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be positive")
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed(self, text: str) -> list[float]:
        vector = [0.0] * self._dimensions
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.sha1(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") % self._dimensions
            vector[bucket] += 1.0 if digest[4] & 1 else -1.0

        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0.0:
            return vector
        return [v / norm for v in vector]


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def get_embedding_provider(settings: Settings | None = None) -> EmbeddingProvider:
    """Return the provider for the configured backend."""
    settings = settings or get_settings()

    backend = settings.embedding_backend.lower().replace("_", "-")

    if backend == "sentence-transformers":
        return SentenceTransformerEmbeddingProvider(
            model_name=settings.embedding_model or DEFAULT_EMBEDDING_MODELS[backend],
            dimensions=settings.embedding_dimensions,
        )

    if backend == "openai":
        return OpenAIEmbeddingProvider(
            model=settings.embedding_model or DEFAULT_EMBEDDING_MODELS[backend],
            dimensions=settings.embedding_dimensions,
            api_key=settings.openai_api_key,
        )

    if backend == "hash":
        return HashEmbeddingProvider(dimensions=settings.embedding_dimensions)

    raise ValueError(
        f"Unknown embedding backend: '{backend}'. "
        f"Valid options: 'sentence-transformers', 'openai', 'hash'"
    )


# ---------------------------------------------------------------------------
# Pipeline step
# ---------------------------------------------------------------------------

def embed_fragments(
    provider:             EmbeddingProvider,
    texts:                Sequence[str],
    expected_dimensions:  int | None = None,
    zero_vector_fallback: bool = False,
) -> list[FragmentVector]:
    """
    Embed every fragment text, preserving order.

    Failure policy:
      zero_vector_fallback=False  any provider error fails the whole step
                                  with EmbeddingFailure
      zero_vector_fallback=True   fragments are embedded one at a time and a
                                  failed fragment gets a zero vector (it will
                                  then match nothing)

    Raises:
        EmbeddingFailure   provider error (strict policy) or short result
        DimensionMismatch  a vector does not have the expected length
    """
    if not texts:
        return []

    dimensions = expected_dimensions or provider.dimensions
    t0 = time.monotonic()

    if zero_vector_fallback:
        vectors = [_embed_or_zero(provider, text, dimensions) for text in texts]
    else:
        try:
            vectors = provider.embed_batch(texts)
        except (DimensionMismatch, EmbeddingFailure):
            raise
        except Exception as exc:
            raise EmbeddingFailure(
                f"Embedding failed for {len(texts)} fragments: {type(exc).__name__}: {exc}"
            ) from exc

        if len(vectors) != len(texts):
            raise EmbeddingFailure(
                f"Provider returned {len(vectors)} vectors for {len(texts)} fragments"
            )

    fragments: list[FragmentVector] = []
    for text, vector in zip(texts, vectors):
        if len(vector) != dimensions:
            raise DimensionMismatch(dimensions, len(vector))
        fragments.append(FragmentVector(text=text, vector=tuple(float(v) for v in vector)))

    logger.info(
        "Embedding done | fragments=%d dims=%d elapsed_ms=%.0f",
        len(fragments), dimensions, (time.monotonic() - t0) * 1000,
    )
    return fragments


def _embed_or_zero(provider: EmbeddingProvider, text: str, dimensions: int) -> list[float]:
    try:
        return provider.embed(text)
    except Exception:
        logger.exception(
            "Embedding failed, substituting zero vector | text=%r", text[:20],
        )
        return [0.0] * dimensions
