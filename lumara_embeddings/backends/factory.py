"""Embedding backend factory."""

from __future__ import annotations

from lumara_embeddings.backends.base import EmbeddingBackend
from lumara_embeddings.backends.deterministic import DeterministicEmbeddingBackend
from lumara_embeddings.backends.sentence_transformers import SentenceTransformersEmbeddingBackend
from lumara_embeddings.config import Settings


def create_embedding_backend(settings: Settings) -> EmbeddingBackend:
    """Build embedding backend from settings."""
    if settings.embedding.backend == "sentence_transformers":
        return SentenceTransformersEmbeddingBackend(
            model_name=settings.embedding.model_name,
            dimension=settings.embedding.dimension,
            normalize=settings.embedding.normalize,
            trust_remote_code=settings.embedding.trust_remote_code,
        )

    return DeterministicEmbeddingBackend(
        model_name=settings.embedding.model_name,
        dimension=settings.embedding.dimension,
        normalize=settings.embedding.normalize,
    )
