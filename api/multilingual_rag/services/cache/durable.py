"""Async SQLite backend for the durable cache tier.

Uses aiosqlite for non-blocking database access in the async API.
Values are stored as JSON text; expiry is filtered in SQL so expired rows
are never returned even before cleanup runs.
"""

import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import aiosqlite
from multilingual_rag.services.interfaces import DurableRecord

logger = logging.getLogger(__name__)

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS cache (
    cache_key TEXT PRIMARY KEY,
    cache_type TEXT NOT NULL,
    value TEXT NOT NULL,
    normalized_text TEXT,
    expires_at REAL NOT NULL,
    access_count INTEGER NOT NULL DEFAULT 1,
    created_at REAL NOT NULL,
    last_accessed_at REAL NOT NULL
);
"""

CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_cache_type_expires ON cache(cache_type, expires_at);",
    "CREATE INDEX IF NOT EXISTS idx_cache_normalized_text ON cache(normalized_text);",
]


class SQLiteCacheBackend:
    """Durable key/value tier shared by the translation and search caches."""

    def __init__(self, db_path: str, clock: Callable[[], float] = time.time) -> None:
        self.db_path = db_path
        self._clock = clock
        self._initialized = False

    async def initialize(self) -> None:
        """Create the table and indices if not present."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(CREATE_TABLE_SQL)
            for idx_sql in CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        self._initialized = True
        logger.info("SQLiteCacheBackend initialized at %s", self.db_path)

    async def get(self, namespaced_key: str) -> Optional[DurableRecord]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT value, expires_at, access_count FROM cache "
                "WHERE cache_key = ? AND expires_at > ?",
                (namespaced_key, self._clock()),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return DurableRecord(
                value=json.loads(row["value"]),
                expires_at=row["expires_at"],
                access_count=row["access_count"],
            )

    async def upsert(
        self,
        namespaced_key: str,
        value: Any,
        expires_at: float,
        cache_type: str,
        normalized_text: str,
    ) -> None:
        """Insert or replace a row, resetting its access counter."""
        now = self._clock()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO cache (
                    cache_key, cache_type, value, normalized_text,
                    expires_at, access_count, created_at, last_accessed_at
                ) VALUES (?, ?, ?, ?, ?, 1, ?, ?)
                ON CONFLICT(cache_key) DO UPDATE SET
                    cache_type = excluded.cache_type,
                    value = excluded.value,
                    normalized_text = excluded.normalized_text,
                    expires_at = excluded.expires_at,
                    access_count = 1,
                    last_accessed_at = excluded.last_accessed_at
                """,
                (
                    namespaced_key,
                    cache_type,
                    json.dumps(value, ensure_ascii=False),
                    normalized_text,
                    expires_at,
                    now,
                    now,
                ),
            )
            await db.commit()

    async def increment_access(self, namespaced_key: str) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "UPDATE cache SET access_count = access_count + 1, "
                "last_accessed_at = ? WHERE cache_key = ?",
                (self._clock(), namespaced_key),
            )
            await db.commit()

    async def stats(self, cache_type: str) -> Dict[str, int]:
        """Row count and summed access count for one cache type."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT COUNT(*), COALESCE(SUM(access_count), 0) FROM cache "
                "WHERE cache_type = ?",
                (cache_type,),
            )
            count, total_access = await cursor.fetchone()
            return {"count": count, "total_access": total_access}

    async def cleanup_expired(self) -> int:
        """Remove expired rows.

        Returns:
            Number of rows removed.
        """
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM cache WHERE expires_at <= ?", (self._clock(),)
            )
            deleted = cursor.rowcount
            await db.commit()
        if deleted:
            logger.info(f"Removed {deleted} expired durable cache rows")
        return deleted
