"""Application entrypoint for lumara-embeddings."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

import uvicorn
from fastapi import FastAPI

from lumara_embeddings.api.errors import register_exception_handlers
from lumara_embeddings.api.routes import router
from lumara_embeddings.backends.factory import create_embedding_backend
from lumara_embeddings.cache import EmbeddingCache
from lumara_embeddings.config import Settings, get_settings
from lumara_embeddings.errors import EmbeddingError
from lumara_embeddings.model import EmbeddingModel
from lumara_embeddings.service import EmbeddingService
from lumara_embeddings.storage.factory import create_durable_store
from lumara_embeddings.telemetry import (
    EmbeddingsMetrics,
    TelemetryRuntime,
    setup_telemetry,
    shutdown_telemetry,
)

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Configure process logging."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def build_service(settings: Settings, metrics: EmbeddingsMetrics | None = None) -> EmbeddingService:
    """Wire backend, model, cache and service from settings."""
    model = EmbeddingModel(
        create_embedding_backend(settings),
        max_input_chars=settings.embedding.max_input_chars,
    )
    cache = EmbeddingCache(
        create_durable_store(settings),
        memory_capacity=settings.cache.memory_capacity,
        retention=timedelta(days=settings.cache.retention_days),
    )
    return EmbeddingService(
        model,
        cache,
        metrics=metrics,
        slow_generation_ms=settings.embedding.slow_generation_ms,
        load_timeout=settings.embedding.load_timeout_seconds,
    )


async def _preload_model(service: EmbeddingService) -> None:
    try:
        await service.initialize()
    except EmbeddingError:
        logger.exception("Background model preload failed; the next request will retry")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create the embedding service and release it on shutdown."""
    settings = get_settings()
    telemetry_runtime = TelemetryRuntime()

    try:
        telemetry_runtime = setup_telemetry(app, settings)
    except Exception:
        logger.exception("OpenTelemetry initialization failed; continuing without telemetry")

    app.state.telemetry_runtime = telemetry_runtime

    service = build_service(settings, telemetry_runtime.embeddings_metrics)
    await service.cache.initialize()
    if settings.cache.preload_limit > 0:
        await service.preload_cache(settings.cache.preload_limit)
    service.cache.start_sweeper(settings.cache.sweep_interval_seconds)
    app.state.embedding_service = service

    preload_task: asyncio.Task[None] | None = None
    if settings.embedding.preload_model:
        preload_task = asyncio.create_task(_preload_model(service))

    try:
        yield
    finally:
        if preload_task is not None and not preload_task.done():
            preload_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await preload_task
        await service.close()
        app.state.embedding_service = None
        try:
            shutdown_telemetry(app, telemetry_runtime)
        except Exception:
            logger.exception("OpenTelemetry shutdown failed")


def create_app() -> FastAPI:
    """Build FastAPI app."""
    settings = get_settings()
    configure_logging()

    app = FastAPI(
        title="Lumara Embeddings",
        description="Local embedding cache and similarity search",
        version=settings.service_version,
        lifespan=lifespan,
    )
    app.include_router(router)
    register_exception_handlers(app)
    return app


app = create_app()


def run() -> None:
    """Run uvicorn server."""
    settings = get_settings()
    port = int(os.environ.get("PORT", settings.server.port))
    uvicorn.run(
        "lumara_embeddings.main:app",
        host=settings.server.host,
        port=port,
        workers=1,
    )


if __name__ == "__main__":
    run()
