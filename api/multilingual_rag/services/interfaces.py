"""
Protocol interfaces for the external services the chat pipeline consumes.

The generative model, the document index, the durable cache store and the
image catalog are opaque to the pipeline. Each is reached through one of the
narrow Protocols below so tests can substitute fakes and deployments can swap
backends.

Usage:
    class MyCompletion(TextCompletionService):
        async def complete(self, prompt: str) -> str:
            ...
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """Answer text plus the evidence chunks that grounded it.

    Chunks are opaque JSON-serializable dicts; an empty list means the answer
    was produced without consulting the knowledge base.
    """

    text: str
    evidence_chunks: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def grounded(self) -> bool:
        return len(self.evidence_chunks) > 0


@dataclass
class DurableRecord:
    """A live row from the durable cache tier."""

    value: Any
    expires_at: float
    access_count: int = 0


@dataclass
class ImageRecord:
    """An image in the catalog. Only active images are ever returned."""

    id: str
    category: str
    storage_url: str
    caption: Optional[str] = None
    extracted_text: Optional[str] = None
    tags: List[str] = field(default_factory=list)


@runtime_checkable
class TextCompletionService(Protocol):
    """Single-prompt completion used for detection, translation, classification,
    keyword extraction and rewriting."""

    async def complete(self, prompt: str) -> str: ...


@runtime_checkable
class GenerationService(Protocol):
    """Grounded answer generation against a document store."""

    async def generate(
        self,
        system_instruction: str,
        contents: Sequence[Dict[str, str]],
        tools: Optional[Sequence[str]] = None,
    ) -> GenerationResult:
        """Generate an answer.

        Args:
            system_instruction: Behavioral instruction for the model
            contents: Conversation messages ({"role", "content"}) ending with
                the current question
            tools: Names of document stores the model may search

        Returns:
            GenerationResult with the answer and any evidence chunks used
        """
        ...


@runtime_checkable
class DurableCacheBackend(Protocol):
    """Narrow persistence contract for the second cache tier.

    Keys are namespaced by the caller (``"search:"``, ``"translation:"``).
    ``get`` only returns rows whose ``expires_at`` is in the future.
    """

    async def get(self, namespaced_key: str) -> Optional[DurableRecord]: ...

    async def upsert(
        self,
        namespaced_key: str,
        value: Any,
        expires_at: float,
        cache_type: str,
        normalized_text: str,
    ) -> None: ...

    async def increment_access(self, namespaced_key: str) -> None: ...

    async def stats(self, cache_type: str) -> Dict[str, int]: ...

    async def cleanup_expired(self) -> int: ...


@runtime_checkable
class ImageCatalog(Protocol):
    """Read access to active catalog images."""

    async def fetch_active(
        self, category: Optional[str], limit: int
    ) -> List[ImageRecord]: ...


@runtime_checkable
class DocumentStore(Protocol):
    """Full-text search over the knowledge base.

    Synchronous because it is handed to the model client as a callable tool.
    """

    def search(self, query: str, limit: int = 5) -> List[Dict[str, Any]]: ...
