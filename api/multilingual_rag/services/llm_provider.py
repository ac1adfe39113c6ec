"""
LLM provider for the chat pipeline.

Implements both language-model interfaces on top of AISuite:
- single-prompt completion for detection, translation, classification and rewriting
- grounded generation with a ``search_documents`` Python tool over the document store

AISuite is synchronous, so every call runs in a worker thread.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import aisuite as ai
from multilingual_rag.core.config import Settings
from multilingual_rag.services.interfaces import DocumentStore, GenerationResult

logger = logging.getLogger(__name__)


class AISuiteLLMService:
    """AISuite-backed completion and grounded generation.

    Errors are re-raised as RuntimeError carrying the provider's message, so
    retry policies can still match on it.
    """

    def __init__(
        self,
        client: ai.Client,
        model: str,
        completion_model: Optional[str] = None,
        max_tokens: int = 8192,
        temperature: float = 0.3,
        document_store: Optional[DocumentStore] = None,
        document_store_name: str = "knowledge-base",
        search_limit: int = 5,
        max_turns: int = 3,
    ):
        """Initialize the service.

        Args:
            client: AISuite Client instance
            model: Generation model with provider prefix (e.g., "openai:gpt-4o-mini")
            completion_model: Model for short completions, defaults to ``model``
            max_tokens: Maximum tokens for completion
            temperature: Temperature for response generation (0.0-2.0)
            document_store: Store searched by the generation tool
            document_store_name: Tool name the pipeline uses to request grounding
            search_limit: Passages returned per tool call
            max_turns: Upper bound on tool-calling round trips
        """
        self.client = client
        self.model_id = model
        self.completion_model_id = completion_model or model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.document_store = document_store
        self.document_store_name = document_store_name
        self.search_limit = search_limit
        self.max_turns = max_turns

    async def complete(self, prompt: str) -> str:
        messages = [{"role": "user", "content": prompt}]
        try:
            response = await asyncio.to_thread(
                self.client.chat.completions.create,
                model=self.completion_model_id,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception as e:
            error_msg = (
                f"Failed to invoke LLM (model={self.completion_model_id}, "
                f"prompt_length={len(prompt)}): {e}"
            )
            logger.error(error_msg)
            raise RuntimeError(error_msg) from e

        if not getattr(response, "choices", None):
            raise RuntimeError("Empty response from LLM")
        return response.choices[0].message.content or ""

    def _build_search_tool(self, evidence: List[Dict[str, Any]]):
        store = self.document_store
        limit = self.search_limit

        def search_documents(query: str) -> List[Dict[str, Any]]:
            """Search the knowledge base documents.

            Args:
                query: Keywords or a short phrase to look up in the documents

            Returns:
                Matching passages, best match first
            """
            results = store.search(query, limit=limit)
            evidence.extend(results)
            return results

        return search_documents

    async def generate(
        self,
        system_instruction: str,
        contents: Sequence[Dict[str, str]],
        tools: Optional[Sequence[str]] = None,
    ) -> GenerationResult:
        messages = [{"role": "system", "content": system_instruction}]
        messages.extend(
            {"role": m["role"], "content": m["content"]} for m in contents
        )

        evidence: List[Dict[str, Any]] = []
        kwargs: Dict[str, Any] = {
            "model": self.model_id,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if tools and self.document_store is not None:
            unknown = [t for t in tools if t != self.document_store_name]
            if unknown:
                logger.warning(f"Ignoring unknown document stores: {unknown}")
            if self.document_store_name in tools:
                kwargs["tools"] = [self._build_search_tool(evidence)]
                kwargs["max_turns"] = self.max_turns

        try:
            response = await asyncio.to_thread(
                self.client.chat.completions.create, **kwargs
            )
        except Exception as e:
            error_msg = f"Failed to generate answer (model={self.model_id}): {e}"
            logger.error(error_msg)
            raise RuntimeError(error_msg) from e

        if not getattr(response, "choices", None):
            raise RuntimeError("Empty response from LLM")

        text = response.choices[0].message.content or ""
        logger.info(
            f"Generated answer ({len(text)} chars, {len(evidence)} evidence chunks)"
        )
        return GenerationResult(text=text, evidence_chunks=evidence)


def create_llm_service(
    settings: Settings, document_store: Optional[DocumentStore] = None
) -> AISuiteLLMService:
    """Build the AISuite service from settings.

    Raises:
        ValueError: If no OpenAI API key is configured
    """
    if not settings.OPENAI_API_KEY:
        error_msg = (
            "OpenAI API key is required but not configured. "
            "Please set OPENAI_API_KEY in environment variables."
        )
        logger.error(error_msg)
        raise ValueError(error_msg)

    client = ai.Client({"openai": {"api_key": settings.OPENAI_API_KEY}})
    logger.info(f"LLM service initialized with model: {settings.LLM_MODEL}")
    return AISuiteLLMService(
        client=client,
        model=settings.LLM_MODEL,
        completion_model=settings.DETECTION_MODEL,
        max_tokens=settings.MAX_TOKENS,
        temperature=settings.LLM_TEMPERATURE,
        document_store=document_store,
        document_store_name=settings.DOCUMENT_STORE_NAME,
        search_limit=settings.DOCUMENT_SEARCH_LIMIT,
        max_turns=settings.GROUNDING_MAX_TURNS,
    )
