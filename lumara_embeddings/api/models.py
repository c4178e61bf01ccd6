"""Request and response models for the local embeddings API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class EmbeddingRequest(BaseModel):
    """Embed one text or a batch of texts."""

    input: str | list[str]
    use_cache: bool = True


class EmbeddingData(BaseModel):
    object: Literal["embedding"] = "embedding"
    index: int
    embedding: list[float]


class EmbeddingResponse(BaseModel):
    object: Literal["list"] = "list"
    model: str
    data: list[EmbeddingData]


class ModelInfoResponse(BaseModel):
    model_name: str
    dimension: int
    is_ready: bool
    is_loading: bool


class ProgressResponse(BaseModel):
    percent: float
    message: str
    failed: bool


class SimilaritySearchRequest(BaseModel):
    """Rank candidate vectors against a query vector."""

    query: list[float]
    candidates: list[list[float]]
    top_k: int | None = Field(default=None, ge=1)
    min_threshold: float | None = Field(default=None, ge=-1.0, le=1.0)


class SimilarityResultItem(BaseModel):
    index: int
    score: float


class SimilaritySearchResponse(BaseModel):
    results: list[SimilarityResultItem]


class ContradictionCandidatesRequest(BaseModel):
    """Candidates close enough to a query to check for contradictions."""

    query: list[float]
    candidates: list[list[float]]
    top_k: int | None = Field(default=None, ge=1)
    threshold: float | None = Field(default=None, ge=-1.0, le=1.0)


class SimilarityGroupsRequest(BaseModel):
    embeddings: list[list[float]]
    threshold: float | None = Field(default=None, ge=-1.0, le=1.0)
    include_singletons: bool = False


class SimilarityGroupsResponse(BaseModel):
    groups: list[list[int]]


class DuplicateCheckRequest(BaseModel):
    a: list[float]
    b: list[float]
    threshold: float | None = Field(default=None, ge=-1.0, le=1.0)


class DuplicateCheckResponse(BaseModel):
    is_duplicate: bool
    similarity: float
    threshold: float


class CacheStatsResponse(BaseModel):
    size: int
    memory_usage_estimate: int
    oldest_entry: datetime | None
    newest_entry: datetime | None
    durable_size: int | None
    memory_hits: int
    durable_hits: int
    misses: int
    hit_rate: float
    durable_errors: int


class CacheClearResponse(BaseModel):
    cleared: bool = True


class CachePreloadRequest(BaseModel):
    limit: int | None = Field(default=None, ge=0)


class CachePreloadResponse(BaseModel):
    loaded: int


class HealthResponse(BaseModel):
    """Health response."""

    status: Literal["ok", "error"] = "error"
    service: str = "lumara-embeddings"
    version: str = "0.1.0"
    backend: str = "none"
    model_ready: bool = False


class ErrorPayload(BaseModel):
    """Canonical error payload."""

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Canonical error response."""

    error: ErrorPayload
