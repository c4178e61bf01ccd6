"""Runtime settings for lumara-embeddings."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseModel):
    """Local API settings. Binds to loopback for the UI collaborator."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8181)


class EmbeddingConfig(BaseModel):
    """Embedding model settings."""

    backend: Literal["deterministic", "sentence_transformers"] = Field(default="deterministic")
    model_name: str = Field(default="sentence-transformers/all-MiniLM-L6-v2")
    trust_remote_code: bool = Field(default=False)
    dimension: int = Field(default=384, ge=8, le=8192)
    normalize: bool = Field(default=True)
    preload_model: bool = Field(default=False)
    max_batch_size: int = Field(default=64, ge=1, le=2048)
    max_input_chars: int = Field(default=32768, ge=1, le=1_000_000)
    load_timeout_seconds: float = Field(default=300.0, gt=0.0, le=3600.0)
    embed_timeout_seconds: float = Field(default=30.0, gt=0.0, le=600.0)
    slow_generation_ms: float = Field(default=100.0, gt=0.0)


class CacheConfig(BaseModel):
    """Two-tier embedding cache settings."""

    durable_backend: Literal["sqlite", "memory"] = Field(default="sqlite")
    db_path: str = Field(default="./data/embeddings.db")
    memory_capacity: int = Field(default=1000, ge=1, le=1_000_000)
    retention_days: float = Field(default=30.0, gt=0.0)
    preload_limit: int = Field(default=100, ge=0)
    sweep_interval_seconds: float = Field(default=0.0, ge=0.0)


class SimilarityConfig(BaseModel):
    """Default thresholds for similarity queries."""

    default_top_k: int = Field(default=10, ge=1, le=1000)
    default_min_threshold: float = Field(default=0.7, ge=-1.0, le=1.0)
    duplicate_threshold: float = Field(default=0.85, ge=-1.0, le=1.0)
    contradiction_threshold: float = Field(default=0.70, ge=-1.0, le=1.0)


class TelemetryConfig(BaseModel):
    """OpenTelemetry configuration."""

    enabled: bool = Field(default=False)
    otlp_endpoint: str = Field(default="http://127.0.0.1:4318")
    otlp_timeout_seconds: float = Field(default=10.0, gt=0.0, le=120.0)
    metrics_export_interval_ms: int = Field(default=5000, ge=250, le=60000)
    sample_ratio: float = Field(default=1.0, ge=0.0, le=1.0)
    otlp_headers: dict[str, str] = Field(default_factory=dict)


class Settings(BaseSettings):
    """Service settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="LUMARA_EMBEDDINGS_",
        env_nested_delimiter="__",
    )

    service_name: str = Field(default="lumara-embeddings")
    service_version: str = Field(default="0.1.0")

    server: ServerConfig = Field(default_factory=ServerConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    similarity: SimilarityConfig = Field(default_factory=SimilarityConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings cache (test helper)."""
    global _settings
    _settings = None
