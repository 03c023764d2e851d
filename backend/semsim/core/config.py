"""
Application configuration via environment variables (12-factor).
Pydantic BaseSettings validates and coerces all values at startup.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ------------------------------------------------------------------
    # Similarity grouping
    # ------------------------------------------------------------------
    similarity_threshold:  float = Field(0.75, ge=-1.0, le=1.0)
    keep_singleton_groups: bool  = False   # True = fragments with no partner get their own group

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------
    embedding_backend:    str = "sentence-transformers"   # "sentence-transformers" | "openai" | "hash"
    embedding_model:      str = ""   # empty = the backend's default model (all-MiniLM-L6-v2 / text-embedding-3-small)
    embedding_dimensions: int = Field(384, gt=0)

    # Legacy behaviour: substitute a zero vector when a single fragment
    # cannot be embedded instead of failing the whole session.
    embedding_zero_vector_fallback: bool = False

    openai_api_key: str = ""

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    session_ttl_minutes:            float = Field(60.0, gt=0)
    session_sweep_interval_minutes: float = Field(10.0, gt=0)
    session_cookie_name:            str   = "session_id"

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------
    worker_pool_size: int = Field(2, ge=1)   # concurrent pipelines (embedding is CPU/GPU bound)
    default_elements: str = "p"              # selector list used when ?elements= is omitted

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------
    app_env: str = "development"   # development | staging | production
    debug: bool = False

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def session_ttl_seconds(self) -> float:
        return self.session_ttl_minutes * 60

    @property
    def session_sweep_interval_seconds(self) -> float:
        return self.session_sweep_interval_minutes * 60


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
