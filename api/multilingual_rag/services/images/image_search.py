"""
Relevance-scored image lookup.

A query is mapped to at most one catalog category and a list of keywords
(both by the language model, concurrently). Every active image in the
category is then scored by substring matches of the query and keywords
against its caption, tags and extracted text.
"""

import asyncio
import json
import logging
import re
from typing import List, Optional, Sequence

from multilingual_rag.services.images.catalog import ScoredImage
from multilingual_rag.services.interfaces import (
    ImageCatalog,
    ImageRecord,
    TextCompletionService,
)
from multilingual_rag.services.retry import LANGUAGE_MODEL_POLICY, RetryExecutor

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = (
    "srs-tec",
    "srs-review",
    "srs-doctor",
    "srs-package",
    "srs-room",
    "srs-operatingroom",
)

# Scoring weights
CAPTION_QUERY_SCORE = 10
CAPTION_KEYWORD_SCORE = 3
TAG_QUERY_SCORE = 5
TAG_KEYWORD_SCORE = 2
TEXT_QUERY_SCORE = 8
TEXT_KEYWORD_SCORE = 2

_FENCE_RE = re.compile(r"```(?:json)?\n?")


def score_image(query: str, image: ImageRecord, keywords: Sequence[str]) -> int:
    """Relevance of ``image`` to ``query``; zero means no field matched."""
    score = 0
    q = query.lower()

    if image.caption:
        caption = image.caption.lower()
        if q in caption:
            score += CAPTION_QUERY_SCORE
        score += CAPTION_KEYWORD_SCORE * sum(1 for k in keywords if k in caption)

    if image.tags:
        tags = [t.lower() for t in image.tags]
        if any(q in tag for tag in tags):
            score += TAG_QUERY_SCORE
        score += TAG_KEYWORD_SCORE * sum(1 for tag in tags for k in keywords if k in tag)

    if image.extracted_text:
        text = image.extracted_text.lower()
        if q in text:
            score += TEXT_QUERY_SCORE
        score += TEXT_KEYWORD_SCORE * sum(1 for k in keywords if k in text)

    return score


class ImageRelevanceSearch:
    """Find the catalog images most relevant to a query."""

    CATEGORY_PROMPT = """Analyze this user question and determine which image category it relates to.

Available categories:
- srs-tec: Surgical techniques, procedures, methods (e.g. "เทคนิคการผ่าตัด", "graft")
- srs-review: Reviews, results, before/after photos, patient cases (e.g. "รีวิว", "ผลลัพธ์", "เคส")
- srs-doctor: Doctor information, surgeon profiles, medical staff (e.g. "หมอ", "แพทย์", "surgeon")
- srs-package: Pricing, packages, costs, promotions (e.g. "ราคา", "แพ็คเกจ", "price")
- srs-room: Patient rooms, recovery rooms, accommodation (e.g. "ห้องพัก", "room", "ward")
- srs-operatingroom: Operating rooms and surgical equipment (e.g. "ห้องผ่าตัด", "operating room")
- general: Doesn't clearly fit the categories above

Respond with ONLY the category code or "general".

User question: "{query}"
"""

    KEYWORD_PROMPT = """Analyze this text and extract important keywords for image search.

Return ONLY a JSON array:
["keyword1", "keyword2", "keyword3"]

Focus on: medical procedures, body parts, treatment types, specific terms.

Text: "{text}"
"""

    def __init__(
        self,
        catalog: ImageCatalog,
        llm: Optional[TextCompletionService] = None,
        retry_executor: Optional[RetryExecutor] = None,
        categories: Optional[Sequence[str]] = None,
        fetch_limit: int = 200,
    ):
        self.catalog = catalog
        self.llm = llm
        self.retry_executor = retry_executor
        self.categories = tuple(categories or DEFAULT_CATEGORIES)
        self.fetch_limit = fetch_limit

    async def _complete(self, prompt: str) -> str:
        async def _call() -> str:
            return await self.llm.complete(prompt)

        if self.retry_executor is not None:
            return await self.retry_executor.execute(_call, LANGUAGE_MODEL_POLICY)
        return await _call()

    async def _classify_category(self, query: str) -> Optional[str]:
        """Closed-set category for ``query``, or None for no filter."""
        if self.llm is None:
            return None
        try:
            raw = await self._complete(self.CATEGORY_PROMPT.format(query=query[:500]))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Image category classification failed: {e}")
            return None

        category = (raw or "").strip().strip("\"'`.").lower()
        if category in self.categories:
            logger.info(f"Image category detected: {category}")
            return category
        logger.info(f"Image category '{category}' not in catalog set, searching all")
        return None

    async def _extract_keywords(self, query: str) -> List[str]:
        if self.llm is None:
            return []
        try:
            raw = await self._complete(self.KEYWORD_PROMPT.format(text=query[:1000]))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Keyword extraction failed: {e}")
            return []

        cleaned = _FENCE_RE.sub("", raw or "").strip()
        try:
            keywords = json.loads(cleaned)
        except json.JSONDecodeError:
            logger.info("Failed to parse keyword list")
            return []
        if not isinstance(keywords, list):
            return []
        return [k for k in (str(k).lower().strip() for k in keywords) if k]

    async def search(
        self,
        query: str,
        max_results: int = 5,
        category: Optional[str] = None,
    ) -> List[ScoredImage]:
        """Score the active images in the query's category.

        All images are returned, including zero scores, sorted by descending
        relevance and truncated to ``max_results``.

        Raises:
            Exception: Catalog errors propagate to the caller.
        """
        if category is None:
            detected, keywords = await asyncio.gather(
                self._classify_category(query), self._extract_keywords(query)
            )
            category = detected
        else:
            keywords = await self._extract_keywords(query)

        images = await self.catalog.fetch_active(category, self.fetch_limit)
        logger.info(
            f"Scoring {len(images)} images (category: {category or 'none'}, "
            f"keywords: {len(keywords)})"
        )

        scored = [ScoredImage(image, score_image(query, image, keywords)) for image in images]
        # sorted() is stable, so equal scores keep catalog order
        scored = sorted(scored, key=lambda s: s.relevance_score, reverse=True)
        for rank, item in enumerate(scored[:max_results], 1):
            logger.debug(
                f"  #{rank}: score={item.relevance_score}, "
                f"caption={(item.image.caption or '')[:40]!r}"
            )
        return scored[:max_results]
