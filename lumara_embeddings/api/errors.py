"""Map embedding errors onto HTTP responses.

Every ``EmbeddingError`` leaves the API as ``{"error": {"code", "message"}}``
with a status derived from its class.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lumara_embeddings.api.models import ErrorPayload, ErrorResponse
from lumara_embeddings.errors import (
    CacheStorageError,
    DimensionMismatchError,
    EmbeddingError,
    EmbeddingTimeoutError,
    GenerationError,
    InvalidInputError,
    ModelLoadError,
    NotInitializedError,
)

logger = logging.getLogger(__name__)

# Checked in order, most specific first.
ERROR_STATUS_CODES: dict[type[EmbeddingError], int] = {
    InvalidInputError: 400,
    DimensionMismatchError: 400,
    NotInitializedError: 503,
    ModelLoadError: 503,
    EmbeddingTimeoutError: 504,
    GenerationError: 500,
    CacheStorageError: 500,
    EmbeddingError: 500,
}


def error_response(
    status_code: int,
    code: str,
    message: str,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build canonical error payload."""
    payload = ErrorResponse(error=ErrorPayload(code=code, message=message))
    return JSONResponse(status_code=status_code, content=payload.model_dump(), headers=headers)


def get_status_code_for_error(error: EmbeddingError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_class):
            return status_code
    return 500


async def embedding_error_handler(request: Request, exc: EmbeddingError) -> JSONResponse:
    status_code = get_status_code_for_error(exc)
    if status_code >= 500:
        logger.error(
            "Server error on %s %s: %s (code=%s, status=%d)",
            request.method,
            request.url.path,
            exc,
            exc.code,
            status_code,
            exc_info=exc.__cause__ or exc,
        )
    else:
        logger.warning(
            "Client error on %s %s: %s (code=%s, status=%d)",
            request.method,
            request.url.path,
            exc,
            exc.code,
            status_code,
        )

    headers = {"Retry-After": "30"} if status_code == 503 else None
    return error_response(status_code, exc.code, str(exc), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EmbeddingError, embedding_error_handler)
