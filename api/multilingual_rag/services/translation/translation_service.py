"""Translation Service for multilingual support.

Translates user queries into the pivot language used for retrieval and
answers back into the user's language. Every remote call runs under the
``translation`` retry policy and goes through the TranslationCache.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from multilingual_rag.metrics.translation_metrics import (
    translation_errors_total,
    translation_operation_duration_seconds,
    translation_query_decisions_total,
)
from multilingual_rag.services.interfaces import TextCompletionService
from multilingual_rag.services.retry import TRANSLATION_POLICY, RetryExecutor
from multilingual_rag.services.translation.cache import TranslationCache
from multilingual_rag.services.translation.language_detector import (
    SUPPORTED_LANGUAGES,
)

logger = logging.getLogger(__name__)


class TranslationService:
    """Cached, retry-wrapped translation between supported languages.

    Unlike detection, translation failures are not degraded here: once the
    retry policy is exhausted the error propagates so the caller can abort
    the request with a typed error.
    """

    TRANSLATION_PROMPT = """Translate the following text from {source_lang} to {target_lang}.
Keep the meaning accurate and natural. Return only the translated text without quotes or explanations.

Text: "{text}"
"""

    def __init__(
        self,
        llm: TextCompletionService,
        cache: Optional[TranslationCache] = None,
        retry_executor: Optional[RetryExecutor] = None,
    ):
        """Initialize the TranslationService.

        Args:
            llm: Completion service used for the actual translation.
            cache: Optional pre-configured TranslationCache instance.
            retry_executor: Executor holding the ``translation`` policy. Without
                one each call is attempted once.
        """
        self.llm = llm
        self.cache = cache or TranslationCache()
        self.retry_executor = retry_executor

        # Statistics
        self.stats = {
            "translations_requested": 0,
            "translations_performed": 0,
            "same_language_passthrough": 0,
            "translation_errors": 0,
        }

    async def _translate(self, text: str, source_lang: str, target_lang: str) -> str:
        """Perform the actual translation using the LLM.

        Raises:
            Exception: If every attempt fails.
        """
        prompt = self.TRANSLATION_PROMPT.format(
            source_lang=SUPPORTED_LANGUAGES.get(source_lang, source_lang),
            target_lang=SUPPORTED_LANGUAGES.get(target_lang, target_lang),
            text=text,
        )

        async def _call() -> str:
            return await self.llm.complete(prompt)

        if self.retry_executor is not None:
            response = await self.retry_executor.execute(_call, TRANSLATION_POLICY)
        else:
            response = await _call()

        self.stats["translations_performed"] += 1
        # An empty completion is not a translation; keep the source text
        return response.strip().strip('"') or text

    async def translate(
        self,
        text: str,
        source_lang: str,
        target_lang: str,
        direction: str = "query",
    ) -> str:
        """Translate ``text`` through the cache.

        Args:
            text: Text to translate.
            source_lang: Source language code.
            target_lang: Target language code.
            direction: Metric label ("query" into the pivot, "response" out of it).

        Returns:
            Translated text, or ``text`` itself when the languages match.
        """
        start_time = time.perf_counter()
        self.stats["translations_requested"] += 1

        if source_lang == target_lang:
            self.stats["same_language_passthrough"] += 1
            translation_query_decisions_total.labels(
                decision="skip_same_language", source_lang=source_lang
            ).inc()
            return text

        try:
            return await self.cache.wrap(
                text, source_lang, target_lang, self._translate
            )
        except Exception as e:
            logger.error(f"Translation {source_lang}->{target_lang} failed: {e}")
            self.stats["translation_errors"] += 1
            translation_errors_total.labels(direction=direction).inc()
            raise
        finally:
            translation_operation_duration_seconds.labels(direction=direction).observe(
                max(0.0, time.perf_counter() - start_time)
            )

    async def translate_texts(
        self, texts: List[str], source_lang: str, target_lang: str
    ) -> List[str]:
        """Translate several texts concurrently, preserving order."""
        if source_lang == target_lang:
            return list(texts)
        return list(
            await asyncio.gather(
                *(self.translate(text, source_lang, target_lang) for text in texts)
            )
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get translation service statistics.

        Returns:
            Dict with service and cache statistics.
        """
        return {
            **self.stats,
            "cache_stats": self.cache.get_stats(),
        }

    def is_supported(self, lang: Optional[str]) -> bool:
        return (lang or "").lower() in SUPPORTED_LANGUAGES
