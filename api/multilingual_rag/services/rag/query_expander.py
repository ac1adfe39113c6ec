"""Context-aware expansion of ambiguous follow-up queries.

Track 1 (LLM): rewrite into a self-contained query using recent turns
Track 2 (Heuristic): prefix the last conversation topic when the LLM fails
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from multilingual_rag.services.interfaces import TextCompletionService
from multilingual_rag.services.rag.query_context import heuristic_expand, is_ambiguous
from multilingual_rag.services.retry import LANGUAGE_MODEL_POLICY, RetryExecutor
from prometheus_client import Counter

logger = logging.getLogger(__name__)

QUERY_EXPANSION_STRATEGY = Counter(
    "rag_query_expansion_strategy_total",
    "Query expansion strategy used",
    ["strategy"],
)


@dataclass
class ExpansionResult:
    expanded_query: str
    expanded: bool
    strategy: str  # "none" | "llm" | "heuristic" | "error_fallback"
    original_query: str
    latency_ms: float


class QueryExpander:
    """Expand ambiguous queries with short-term conversation context."""

    REWRITE_PROMPT = """You rewrite follow-up questions into self-contained search queries.

Conversation so far:
{history}

Current question: "{query}"

Rules:
1. If the question is already self-contained, return it UNCHANGED.
2. Replace references such as "it", "that", "อันนี้" or "그거" with what they refer to.
3. Keep the language of the current question. Do NOT answer it.

Respond with ONLY JSON:
{{"expanded_query": "...", "was_expanded": true/false}}"""

    def __init__(
        self,
        llm: Optional[TextCompletionService] = None,
        retry_executor: Optional[RetryExecutor] = None,
        max_history_turns: int = 3,
    ):
        self.llm = llm
        self.retry_executor = retry_executor
        self.max_history_turns = max_history_turns

    async def expand(
        self, query: str, chat_history: Optional[List[Dict[str, str]]]
    ) -> ExpansionResult:
        """Return an expanded query, or the original when no expansion applies."""
        start = time.monotonic()
        history = chat_history or []

        if not is_ambiguous(query, history):
            return self._result(query, query, "none", start)

        if self.llm is not None:
            try:
                expanded = await self._llm_expand(query, history)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"LLM query expansion failed: {e}")
                expanded = None
            if expanded is not None:
                strategy = "llm" if expanded != query else "none"
                return self._result(query, expanded, strategy, start)

        fallback = heuristic_expand(query, history)
        if fallback:
            return self._result(query, fallback, "heuristic", start)
        return self._result(query, query, "error_fallback", start)

    def _result(
        self, query: str, expanded: str, strategy: str, start: float
    ) -> ExpansionResult:
        QUERY_EXPANSION_STRATEGY.labels(strategy=strategy).inc()
        return ExpansionResult(
            expanded_query=expanded,
            expanded=expanded != query,
            strategy=strategy,
            original_query=query,
            latency_ms=(time.monotonic() - start) * 1000,
        )

    def _format_history(self, chat_history: List[Dict[str, str]]) -> str:
        turns = chat_history[-(self.max_history_turns * 2) :]
        return "\n".join(
            f"{m.get('role', 'user')}: {m.get('content', '')[:300]}" for m in turns
        )

    async def _llm_expand(
        self, query: str, chat_history: List[Dict[str, str]]
    ) -> Optional[str]:
        prompt = self.REWRITE_PROMPT.format(
            history=self._format_history(chat_history), query=query
        )

        async def _call() -> str:
            return await self.llm.complete(prompt)

        if self.retry_executor is not None:
            raw = await self.retry_executor.execute(_call, LANGUAGE_MODEL_POLICY)
        else:
            raw = await _call()
        return self._parse(raw, query)

    @staticmethod
    def _parse(raw: str, original_query: str) -> Optional[str]:
        """Parse the JSON reply.

        Returns the original query when the model judged it self-contained and
        None when nothing usable came back.
        """
        cleaned = re.sub(r"```(?:json)?", "", raw or "").strip()
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse query expansion response: {e}")
            return None
        if not isinstance(data, dict):
            return None
        if not data.get("was_expanded"):
            return original_query
        expanded = str(data.get("expanded_query") or "").strip()
        return expanded or None
