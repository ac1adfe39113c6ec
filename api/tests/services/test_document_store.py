"""Tests for the FTS5 document store."""

import pytest
from multilingual_rag.services.rag.document_store import (
    MAX_CONTENT_LENGTH,
    SQLiteDocumentStore,
)


@pytest.fixture
def store(tmp_path):
    store = SQLiteDocumentStore(str(tmp_path / "docs" / "documents.db"))
    store.add_document("ห้องพักเดี่ยว", "ห้องพักเดี่ยวราคา 3000 บาทต่อคืน", source="rooms.md")
    store.add_document("แพ็คเกจผ่าตัด", "แพ็คเกจผ่าตัดราคา 150000 บาท รวมค่าห้อง", source="packages.md")
    store.add_document("Visiting hours", "Visitors are welcome from 9am to 8pm daily.")
    yield store
    store.close()


class TestSQLiteDocumentStore:
    """Tests for inserts and substring-capable search."""

    def test_count(self, store):
        assert store.count() == 3

    def test_thai_substring_search(self, store):
        results = store.search("ห้องพัก")

        assert [r["title"] for r in results] == ["ห้องพักเดี่ยว"]
        assert set(results[0]) == {"id", "title", "content", "source"}
        assert results[0]["source"] == "rooms.md"

    def test_terms_are_ored(self, store):
        results = store.search("ราคา visitors")

        assert len(results) == 3

    def test_limit(self, store):
        assert len(store.search("ราคา", limit=1)) == 1

    def test_case_insensitive_english(self, store):
        results = store.search("VISITORS")

        assert results[0]["title"] == "Visiting hours"

    def test_short_terms_use_substring_scan(self, store):
        results = store.search("9am")
        assert len(results) == 1

        results = store.search("to")
        assert [r["title"] for r in results] == ["Visiting hours"]

    def test_fts_operators_are_literal(self, store):
        # A bare trailing AND is an FTS5 syntax error unless quoted
        results = store.search("ราคา AND")

        assert {r["source"] for r in results} == {"rooms.md", "packages.md"}

    def test_empty_query(self, store):
        assert store.search("   ") == []

    def test_delete_removes_from_index(self, store):
        doc_id = store.search("ห้องพัก")[0]["id"]

        assert store.delete_document(doc_id) is True
        assert store.search("ห้องพัก") == []
        assert store.delete_document(doc_id) is False

    def test_rejects_invalid_content(self, store):
        with pytest.raises(ValueError):
            store.add_document("empty", "   ")
        with pytest.raises(ValueError):
            store.add_document("too long", "x" * (MAX_CONTENT_LENGTH + 1))
