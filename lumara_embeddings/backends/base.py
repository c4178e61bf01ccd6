"""Embedding backend protocol."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

ProgressReporter = Callable[[float, str], None]


class EmbeddingBackend(Protocol):
    """Opaque text-to-vector runtime wrapped by ``EmbeddingModel``."""

    name: str
    model_name: str
    dimension: int

    async def load(self, report: ProgressReporter) -> None:
        """Fetch and instantiate the model, reporting percent/message pairs."""

    async def embed(self, inputs: list[str]) -> list[list[float]]:
        """Generate one embedding vector for each input text, in order."""
