"""Async SQLite image catalog.

Images are soft-deleted through ``is_active`` and only active rows are ever
returned to search. Tags are stored as a JSON array.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import aiosqlite
from multilingual_rag.services.interfaces import ImageRecord

logger = logging.getLogger(__name__)

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS images (
    id TEXT PRIMARY KEY,
    category TEXT NOT NULL,
    storage_url TEXT NOT NULL,
    caption TEXT,
    extracted_text TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);
"""

CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_images_category_active ON images(category, is_active);",
]


@dataclass
class ScoredImage:
    """An image with its relevance to a query. Never persisted."""

    image: ImageRecord
    relevance_score: int


def _row_to_record(row: aiosqlite.Row) -> ImageRecord:
    try:
        tags = json.loads(row["tags"] or "[]")
    except json.JSONDecodeError:
        logger.warning(f"Invalid tags JSON for image {row['id']}")
        tags = []
    return ImageRecord(
        id=row["id"],
        category=row["category"],
        storage_url=row["storage_url"],
        caption=row["caption"],
        extracted_text=row["extracted_text"],
        tags=[str(t) for t in tags] if isinstance(tags, list) else [],
    )


class SQLiteImageCatalog:
    """Image metadata repository backed by aiosqlite."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    async def initialize(self) -> None:
        """Create the table and indices if not present."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(CREATE_TABLE_SQL)
            for idx_sql in CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("SQLiteImageCatalog initialized at %s", self.db_path)

    async def add_image(
        self,
        category: str,
        storage_url: str,
        caption: Optional[str] = None,
        extracted_text: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        image_id: Optional[str] = None,
    ) -> ImageRecord:
        record = ImageRecord(
            id=image_id or str(uuid.uuid4()),
            category=category,
            storage_url=storage_url,
            caption=caption,
            extracted_text=extracted_text,
            tags=list(tags or []),
        )
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO images (
                    id, category, storage_url, caption, extracted_text,
                    tags, is_active, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, 1, ?)
                """,
                (
                    record.id,
                    record.category,
                    record.storage_url,
                    record.caption,
                    record.extracted_text,
                    json.dumps(record.tags, ensure_ascii=False),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            await db.commit()
        logger.info(f"Added image {record.id} [{category}]")
        return record

    async def set_active(self, image_id: str, active: bool) -> bool:
        """Soft-delete or restore an image."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "UPDATE images SET is_active = ? WHERE id = ?",
                (1 if active else 0, image_id),
            )
            await db.commit()
            return cursor.rowcount > 0

    async def fetch_active(
        self, category: Optional[str], limit: int
    ) -> List[ImageRecord]:
        """Active images, newest first, optionally restricted to one category."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            if category:
                cursor = await db.execute(
                    "SELECT * FROM images WHERE is_active = 1 AND category = ? "
                    "ORDER BY created_at DESC LIMIT ?",
                    (category, limit),
                )
            else:
                cursor = await db.execute(
                    "SELECT * FROM images WHERE is_active = 1 "
                    "ORDER BY created_at DESC LIMIT ?",
                    (limit,),
                )
            rows = await cursor.fetchall()
        return [_row_to_record(row) for row in rows]
