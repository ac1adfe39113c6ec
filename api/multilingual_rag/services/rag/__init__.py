"""Retrieval services: search result cache, query expansion and the document store."""

from multilingual_rag.services.rag.document_store import SQLiteDocumentStore
from multilingual_rag.services.rag.query_expander import ExpansionResult, QueryExpander
from multilingual_rag.services.rag.search_cache import (
    SearchCacheHit,
    SearchResultCache,
)

__all__ = [
    "ExpansionResult",
    "QueryExpander",
    "SQLiteDocumentStore",
    "SearchCacheHit",
    "SearchResultCache",
]
