"""
SQLite full-text document store used as the grounded-generation search tool.

Documents are stored as pre-chunked passages. Search goes through an FTS5
virtual table with the trigram tokenizer, so Thai and CJK text (which has no
word separators) can still be matched by substring.
"""

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Trigram tokenizer cannot match terms shorter than this
MIN_TERM_LENGTH = 3
MAX_CONTENT_LENGTH = 20000


class SQLiteDocumentStore:
    """Knowledge-base passages with FTS5 search.

    The store is synchronous because the model client invokes ``search`` as a
    plain Python tool from a worker thread. A single connection guarded by a
    lock serves both reads and writes.
    """

    def __init__(self, db_path: str):
        """
        Open (and create if needed) the document database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._lock = threading.Lock()

        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(db_path, check_same_thread=False, timeout=10.0)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=10000")

        self._initialize_schema()
        logger.info(f"SQLite document store initialized: {db_path}")

    def _initialize_schema(self) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    source TEXT,
                    created_at TEXT NOT NULL,
                    CHECK(LENGTH(content) <= 20000)
                )
            """
            )
            self._conn.execute(
                """
                CREATE VIRTUAL TABLE IF NOT EXISTS documents_fts
                USING fts5(title, content, content=documents, content_rowid=id,
                           tokenize='trigram')
            """
            )
            self._conn.execute(
                """
                CREATE TRIGGER IF NOT EXISTS documents_ai AFTER INSERT ON documents BEGIN
                    INSERT INTO documents_fts(rowid, title, content)
                    VALUES (new.id, new.title, new.content);
                END
            """
            )
            self._conn.execute(
                """
                CREATE TRIGGER IF NOT EXISTS documents_ad AFTER DELETE ON documents BEGIN
                    INSERT INTO documents_fts(documents_fts, rowid, title, content)
                    VALUES('delete', old.id, old.title, old.content);
                END
            """
            )

    def add_document(
        self, title: str, content: str, source: Optional[str] = None
    ) -> int:
        """Insert a passage and return its id."""
        if not content or not content.strip():
            raise ValueError("Document content must not be empty")
        if len(content) > MAX_CONTENT_LENGTH:
            raise ValueError(
                f"Document content exceeds {MAX_CONTENT_LENGTH} characters"
            )

        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                INSERT INTO documents (title, content, source, created_at)
                VALUES (?, ?, ?, ?)
            """,
                (title, content, source, datetime.now(timezone.utc).isoformat()),
            )
            doc_id = cursor.lastrowid
        logger.debug(f"Added document {doc_id}: {title[:50]}")
        return doc_id

    def delete_document(self, doc_id: int) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM documents WHERE id = ?", (doc_id,))
            return cursor.rowcount > 0

    def count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()
        return row[0] if row else 0

    @staticmethod
    def _build_match_query(query: str) -> Optional[str]:
        """OR together the quoted terms long enough for the trigram index."""
        terms = [t for t in query.split() if len(t) >= MIN_TERM_LENGTH]
        if not terms:
            return None
        # Quote each term so FTS5 operators in user text are taken literally
        return " OR ".join('"' + t.replace('"', '""') + '"' for t in terms)

    def search(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        """Search the knowledge base for passages relevant to a query.

        Args:
            query: Search words or phrase, in the knowledge base language
            limit: Maximum number of passages to return

        Returns:
            Matching passages as dicts with id, title, content and source,
            best match first
        """
        query = (query or "").strip()
        if not query:
            return []

        match_query = self._build_match_query(query)
        with self._lock:
            if match_query is not None:
                rows = self._conn.execute(
                    """
                    SELECT documents.id, documents.title, documents.content,
                           documents.source
                    FROM documents_fts
                    JOIN documents ON documents.id = documents_fts.rowid
                    WHERE documents_fts MATCH ?
                    ORDER BY documents_fts.rank
                    LIMIT ?
                """,
                    (match_query, limit),
                ).fetchall()
            else:
                # Terms too short for trigrams: plain substring scan
                pattern = f"%{query}%"
                rows = self._conn.execute(
                    """
                    SELECT id, title, content, source FROM documents
                    WHERE title LIKE ? OR content LIKE ?
                    ORDER BY id
                    LIMIT ?
                """,
                    (pattern, pattern, limit),
                ).fetchall()

        results = [dict(row) for row in rows]
        logger.info(f"Document search returned {len(results)} passages")
        return results

    def close(self) -> None:
        with self._lock:
            self._conn.close()
