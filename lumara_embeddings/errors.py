"""Typed errors for embedding generation, caching and similarity."""

from __future__ import annotations


class EmbeddingError(Exception):
    """Base exception for all lumara-embeddings errors."""

    code = "internal"


class InvalidInputError(EmbeddingError, ValueError):
    """Raised for empty or malformed text and invalid arguments."""

    code = "invalid_request"


class NotInitializedError(EmbeddingError, RuntimeError):
    """Raised when an embedding is requested before the model has loaded."""

    code = "model_not_ready"

    def __init__(self, model_name: str):
        self.model_name = model_name
        super().__init__(f"Embedding model '{model_name}' is not initialized")


class ModelLoadError(EmbeddingError):
    """Raised when the embedding model cannot be fetched or instantiated.

    The original failure is chained as ``__cause__``. Loads are never retried
    internally; callers decide whether and when to try again.
    """

    code = "model_load_failed"

    def __init__(self, model_name: str, reason: str):
        self.model_name = model_name
        self.reason = reason
        super().__init__(f"Failed to load embedding model '{model_name}': {reason}")


class GenerationError(EmbeddingError):
    """Raised when the backend fails or returns an unusable vector."""

    code = "generation_failed"


class DimensionMismatchError(EmbeddingError, ValueError):
    """Raised when two vectors of different (or zero) length are compared."""

    code = "dimension_mismatch"

    def __init__(self, left: int, right: int):
        self.left = left
        self.right = right
        super().__init__(f"Vector dimension mismatch: {left} vs {right}")


class EmbeddingTimeoutError(EmbeddingError, TimeoutError):
    """Raised when an operation exceeds its caller-supplied deadline."""

    code = "upstream_timeout"

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout:g}s")


class CacheStorageError(EmbeddingError):
    """Raised by durable stores; absorbed at the cache boundary."""

    code = "cache_storage"
