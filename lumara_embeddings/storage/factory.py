"""Durable store factory."""

from __future__ import annotations

from lumara_embeddings.config import Settings
from lumara_embeddings.storage.base import DurableStore
from lumara_embeddings.storage.memory import InMemoryDurableStore
from lumara_embeddings.storage.sqlite import SQLiteDurableStore


def create_durable_store(settings: Settings) -> DurableStore:
    """Build the durable cache tier from settings."""
    if settings.cache.durable_backend == "sqlite":
        return SQLiteDurableStore(settings.cache.db_path)

    return InMemoryDurableStore()
