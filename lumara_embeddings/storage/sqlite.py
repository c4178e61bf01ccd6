"""SQLite-backed durable store for cached embeddings"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from collections.abc import AsyncIterator, Callable
from datetime import datetime
from pathlib import Path
from typing import TypeVar

import numpy as np

from lumara_embeddings.errors import CacheStorageError
from lumara_embeddings.storage.base import CacheEntry
from lumara_embeddings.vector_math import to_embedding

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PAGE_SIZE = 256


def _serialize_vector(vector: tuple[float, ...]) -> bytes:
    return np.asarray(vector, dtype=np.float64).tobytes()


def _deserialize_vector(blob: bytes, dimension: int) -> tuple[float, ...]:
    values = np.frombuffer(blob, dtype=np.float64)
    if values.shape[0] != dimension:
        raise CacheStorageError(
            f"Stored vector has {values.shape[0]} values but record declares {dimension}"
        )
    return to_embedding(values)


class SQLiteDurableStore:
    """Durable embedding store on a single SQLite file

    One connection is shared and guarded by a lock; every statement runs in a
    worker thread so the event loop never blocks on disk I/O.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """
        Open the connection and create the schema on first use

        Returns:
            Configured sqlite3.Connection with row_factory set
        """
        if self._conn is None:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            self._create_tables(conn)
            self._conn = conn
        return self._conn

    @staticmethod
    def _create_tables(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS embeddings (
                key TEXT PRIMARY KEY,
                vector BLOB NOT NULL,
                dimension INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                last_accessed_at TEXT NOT NULL,
                CHECK(dimension > 0)
            )
        """)

        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_embeddings_last_accessed_at
            ON embeddings(last_accessed_at)
        """)

        conn.commit()

    async def _run(self, operation: Callable[[sqlite3.Connection], T]) -> T:
        def call() -> T:
            with self._lock:
                return operation(self._get_connection())

        try:
            return await asyncio.to_thread(call)
        except sqlite3.Error as exc:
            raise CacheStorageError(f"SQLite embedding store failed: {exc}") from exc

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> CacheEntry:
        return CacheEntry(
            key=row["key"],
            vector=_deserialize_vector(row["vector"], row["dimension"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            last_accessed_at=datetime.fromisoformat(row["last_accessed_at"]),
        )

    async def get(self, key: str) -> CacheEntry | None:
        def query(conn: sqlite3.Connection) -> sqlite3.Row | None:
            cursor = conn.execute(
                """
                SELECT key, vector, dimension, created_at, last_accessed_at
                FROM embeddings
                WHERE key = ?
            """,
                (key,),
            )
            return cursor.fetchone()

        row = await self._run(query)
        if row is None:
            return None
        return self._row_to_entry(row)

    async def contains(self, key: str) -> bool:
        def query(conn: sqlite3.Connection) -> bool:
            cursor = conn.execute("SELECT 1 FROM embeddings WHERE key = ?", (key,))
            return cursor.fetchone() is not None

        return await self._run(query)

    async def put(self, entry: CacheEntry) -> None:
        def write(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                INSERT OR REPLACE INTO embeddings (
                    key, vector, dimension, created_at, last_accessed_at
                ) VALUES (?, ?, ?, ?, ?)
            """,
                (
                    entry.key,
                    _serialize_vector(entry.vector),
                    len(entry.vector),
                    entry.created_at.isoformat(),
                    entry.last_accessed_at.isoformat(),
                ),
            )
            conn.commit()

        await self._run(write)

    async def delete(self, key: str) -> None:
        def write(conn: sqlite3.Connection) -> None:
            conn.execute("DELETE FROM embeddings WHERE key = ?", (key,))
            conn.commit()

        await self._run(write)

    async def iterate(self) -> AsyncIterator[CacheEntry]:
        # Keyset pagination keeps memory bounded and tolerates deletes mid-scan.
        last_key = ""
        while True:
            def page(conn: sqlite3.Connection, after: str = last_key) -> list[sqlite3.Row]:
                cursor = conn.execute(
                    """
                    SELECT key, vector, dimension, created_at, last_accessed_at
                    FROM embeddings
                    WHERE key > ?
                    ORDER BY key
                    LIMIT ?
                """,
                    (after, _PAGE_SIZE),
                )
                return cursor.fetchall()

            rows = await self._run(page)
            if not rows:
                return
            for row in rows:
                yield self._row_to_entry(row)
            last_key = rows[-1]["key"]

    async def clear(self) -> None:
        def write(conn: sqlite3.Connection) -> None:
            conn.execute("DELETE FROM embeddings")
            conn.commit()

        await self._run(write)

    async def count(self) -> int:
        def query(conn: sqlite3.Connection) -> int:
            result = conn.execute("SELECT COUNT(*) FROM embeddings").fetchone()
            return result[0] if result else 0

        return await self._run(query)

    async def created_range(self) -> tuple[datetime | None, datetime | None]:
        # Timestamps are written as UTC ISO 8601 text, which sorts chronologically.
        def query(conn: sqlite3.Connection) -> tuple[str | None, str | None]:
            row = conn.execute("SELECT MIN(created_at), MAX(created_at) FROM embeddings").fetchone()
            return (row[0], row[1]) if row else (None, None)

        oldest, newest = await self._run(query)
        return (
            datetime.fromisoformat(oldest) if oldest else None,
            datetime.fromisoformat(newest) if newest else None,
        )

    async def close(self) -> None:
        """Close the shared connection; the next call reopens it."""

        def close_sync() -> None:
            with self._lock:
                if self._conn is not None:
                    self._conn.close()
                    self._conn = None

        await asyncio.to_thread(close_sync)
        logger.debug("Closed embedding store at %s", self.db_path)
