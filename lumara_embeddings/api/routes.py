"""FastAPI routes for the local embeddings service."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from lumara_embeddings.api.errors import error_response
from lumara_embeddings.api.models import (
    CacheClearResponse,
    CachePreloadRequest,
    CachePreloadResponse,
    CacheStatsResponse,
    ContradictionCandidatesRequest,
    DuplicateCheckRequest,
    DuplicateCheckResponse,
    EmbeddingData,
    EmbeddingRequest,
    EmbeddingResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfoResponse,
    ProgressResponse,
    SimilarityGroupsRequest,
    SimilarityGroupsResponse,
    SimilarityResultItem,
    SimilaritySearchRequest,
    SimilaritySearchResponse,
)
from lumara_embeddings.config import get_settings
from lumara_embeddings.errors import InvalidInputError
from lumara_embeddings.service import EmbeddingService
from lumara_embeddings.similarity import (
    find_contradiction_candidates,
    find_similar,
    find_similar_groups,
    is_duplicate,
)
from lumara_embeddings.vector_math import cosine_similarity

router = APIRouter()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
    504: {"model": ErrorResponse},
}


def get_service(request: Request) -> EmbeddingService | None:
    return getattr(request.app.state, "embedding_service", None)


def service_unavailable() -> JSONResponse:
    return error_response(
        status_code=503,
        code="model_not_ready",
        message="Embedding service is unavailable.",
    )


def _model_info(service: EmbeddingService) -> ModelInfoResponse:
    info = service.get_info()
    return ModelInfoResponse(
        model_name=info.model_name,
        dimension=info.dimension,
        is_ready=info.is_ready,
        is_loading=info.is_loading,
    )


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request) -> HealthResponse:
    """Service health and model readiness."""
    settings = get_settings()
    service = get_service(request)
    return HealthResponse(
        status="ok" if service is not None else "error",
        service=settings.service_name,
        version=settings.service_version,
        backend=settings.embedding.backend if service is not None else "none",
        model_ready=service.is_ready() if service is not None else False,
    )


@router.get("/v1/model", response_model=ModelInfoResponse, responses=ERROR_RESPONSES, tags=["Model"])
async def get_model(request: Request):
    service = get_service(request)
    if service is None:
        return service_unavailable()
    return _model_info(service)


@router.post(
    "/v1/model/initialize",
    response_model=ModelInfoResponse,
    responses=ERROR_RESPONSES,
    tags=["Model"],
)
async def initialize_model(request: Request):
    """Load the model now instead of on the first embedding request."""
    service = get_service(request)
    if service is None:
        return service_unavailable()
    await service.initialize(timeout=get_settings().embedding.load_timeout_seconds)
    return _model_info(service)


@router.get("/v1/model/progress", response_model=ProgressResponse, responses=ERROR_RESPONSES, tags=["Model"])
async def get_model_progress(request: Request):
    service = get_service(request)
    if service is None:
        return service_unavailable()
    state = service.model.progress.state
    return ProgressResponse(percent=state.percent, message=state.message, failed=state.failed)


@router.post("/v1/embeddings", response_model=EmbeddingResponse, responses=ERROR_RESPONSES, tags=["Embeddings"])
async def create_embeddings(request: Request, body: EmbeddingRequest):
    """Embed one text or a batch, reusing cached vectors."""
    service = get_service(request)
    if service is None:
        return service_unavailable()

    settings = get_settings()
    timeout = settings.embedding.embed_timeout_seconds

    if isinstance(body.input, str):
        vectors = [
            await service.generate_embedding(body.input, use_cache=body.use_cache, timeout=timeout)
        ]
    else:
        if len(body.input) > settings.embedding.max_batch_size:
            raise InvalidInputError(
                f"Embedding input batch size {len(body.input)} exceeds configured limit "
                f"{settings.embedding.max_batch_size}."
            )
        vectors = await service.generate_batch_embeddings(
            body.input, use_cache=body.use_cache, timeout=timeout
        )

    return EmbeddingResponse(
        model=service.get_info().model_name,
        data=[EmbeddingData(index=idx, embedding=list(vector)) for idx, vector in enumerate(vectors)],
    )


@router.post(
    "/v1/similarity/search",
    response_model=SimilaritySearchResponse,
    responses=ERROR_RESPONSES,
    tags=["Similarity"],
)
async def similarity_search(body: SimilaritySearchRequest) -> SimilaritySearchResponse:
    defaults = get_settings().similarity
    results = find_similar(
        body.query,
        body.candidates,
        top_k=body.top_k if body.top_k is not None else defaults.default_top_k,
        min_threshold=(
            body.min_threshold if body.min_threshold is not None else defaults.default_min_threshold
        ),
    )
    return SimilaritySearchResponse(
        results=[SimilarityResultItem(index=result.index, score=result.score) for result in results]
    )


@router.post(
    "/v1/similarity/groups",
    response_model=SimilarityGroupsResponse,
    responses=ERROR_RESPONSES,
    tags=["Similarity"],
)
async def similarity_groups(body: SimilarityGroupsRequest) -> SimilarityGroupsResponse:
    threshold = body.threshold if body.threshold is not None else get_settings().similarity.duplicate_threshold
    groups = find_similar_groups(body.embeddings, threshold, include_singletons=body.include_singletons)
    return SimilarityGroupsResponse(groups=groups)


@router.post(
    "/v1/similarity/duplicate",
    response_model=DuplicateCheckResponse,
    responses=ERROR_RESPONSES,
    tags=["Similarity"],
)
async def duplicate_check(body: DuplicateCheckRequest) -> DuplicateCheckResponse:
    threshold = body.threshold if body.threshold is not None else get_settings().similarity.duplicate_threshold
    return DuplicateCheckResponse(
        is_duplicate=is_duplicate(body.a, body.b, threshold),
        similarity=cosine_similarity(body.a, body.b),
        threshold=threshold,
    )


@router.post(
    "/v1/similarity/contradiction-candidates",
    response_model=SimilaritySearchResponse,
    responses=ERROR_RESPONSES,
    tags=["Similarity"],
)
async def contradiction_candidates(body: ContradictionCandidatesRequest) -> SimilaritySearchResponse:
    """Candidates similar enough to the query to be worth a contradiction check."""
    defaults = get_settings().similarity
    results = find_contradiction_candidates(
        body.query,
        body.candidates,
        threshold=body.threshold if body.threshold is not None else defaults.contradiction_threshold,
        top_k=body.top_k if body.top_k is not None else defaults.default_top_k,
    )
    return SimilaritySearchResponse(
        results=[SimilarityResultItem(index=result.index, score=result.score) for result in results]
    )


@router.get("/v1/cache/stats", response_model=CacheStatsResponse, responses=ERROR_RESPONSES, tags=["Cache"])
async def cache_stats(request: Request):
    service = get_service(request)
    if service is None:
        return service_unavailable()
    stats = await service.get_cache_stats()
    return CacheStatsResponse(
        size=stats.size,
        memory_usage_estimate=stats.memory_usage_estimate,
        oldest_entry=stats.oldest_entry,
        newest_entry=stats.newest_entry,
        durable_size=stats.durable_size,
        memory_hits=stats.memory_hits,
        durable_hits=stats.durable_hits,
        misses=stats.misses,
        hit_rate=stats.hit_rate,
        durable_errors=stats.durable_errors,
    )


@router.delete("/v1/cache", response_model=CacheClearResponse, responses=ERROR_RESPONSES, tags=["Cache"])
async def clear_cache(request: Request):
    service = get_service(request)
    if service is None:
        return service_unavailable()
    await service.clear_cache()
    logger.info("Embedding cache cleared via API")
    return CacheClearResponse()


@router.post("/v1/cache/preload", response_model=CachePreloadResponse, responses=ERROR_RESPONSES, tags=["Cache"])
async def preload_cache(request: Request, body: CachePreloadRequest | None = None):
    service = get_service(request)
    if service is None:
        return service_unavailable()
    limit = body.limit if body is not None and body.limit is not None else get_settings().cache.preload_limit
    loaded = await service.preload_cache(limit)
    return CachePreloadResponse(loaded=loaded)
