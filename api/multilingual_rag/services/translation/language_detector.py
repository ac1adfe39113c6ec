"""Language detector with a script fast path and retry-wrapped LLM detection."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import ClassVar, Iterable, Optional

from multilingual_rag.metrics.translation_metrics import language_detection_total
from multilingual_rag.services.interfaces import TextCompletionService
from multilingual_rag.services.retry import LANGUAGE_MODEL_POLICY, RetryExecutor

logger = logging.getLogger(__name__)

# Supported languages (ISO 639-1) with English display names for prompts
SUPPORTED_LANGUAGES = {
    "th": "Thai",
    "en": "English",
    "ko": "Korean",
    "zh": "Chinese",
}

# Native names shown to end users
LANGUAGE_NAMES = {
    "th": "ไทย",
    "en": "English",
    "ko": "한국어",
    "zh": "中文",
}

GREETINGS = {
    "th": "สวัสดีค่ะ ยินดีต้อนรับค่ะ มีอะไรให้ช่วยไหมคะ",
    "en": "Hello! Welcome. How can I help you today?",
    "ko": "안녕하세요! 환영합니다. 무엇을 도와드릴까요?",
    "zh": "您好！欢迎光临。我能为您做些什么？",
}

DEFAULT_LANGUAGE = "en"


def get_greeting(lang: str) -> str:
    return GREETINGS.get(lang, GREETINGS[DEFAULT_LANGUAGE])


@dataclass
class LanguageDetectionDetails:
    """Detailed language detection result."""

    language_code: str
    backend: str


class LanguageDetector:
    """Detect the language of a user message.

    Short texts are classified by script when the script is unambiguous.
    Everything else goes to the language model under the ``language_model``
    retry policy. Detection never raises: failures and unsupported answers
    fall back to the script classifier, then to English.
    """

    DETECTION_PROMPT = """Detect the language of this text and return only the ISO 639-1 code ({codes}):

"{text}"

Return only: {codes}"""

    # Checked in order for the fallback classifier
    SCRIPT_HINTS: ClassVar[list[tuple[re.Pattern[str], str]]] = [
        (re.compile(r"[\u4e00-\u9fff]"), "zh"),  # Han ideographs
        (re.compile(r"[\u0e00-\u0e7f]"), "th"),  # Thai
        (re.compile(r"[\uac00-\ud7af]"), "ko"),  # Hangul syllables
    ]

    # Scripts trusted for the short-text fast path
    FAST_PATH_LANGUAGES: ClassVar[frozenset[str]] = frozenset({"th", "ko"})

    def __init__(
        self,
        llm: Optional[TextCompletionService] = None,
        retry_executor: Optional[RetryExecutor] = None,
        supported_languages: Optional[Iterable[str]] = None,
        short_text_threshold: int = 10,
    ):
        self.llm = llm
        self.retry_executor = retry_executor
        self.supported_languages = tuple(supported_languages or SUPPORTED_LANGUAGES)
        self.short_text_threshold = max(1, short_text_threshold)

    def _normalize_lang_code(self, code: str) -> Optional[str]:
        normalized = (code or "").strip().strip("\"'.`").lower()
        if "-" in normalized:
            normalized = normalized.split("-", 1)[0]
        return normalized if normalized in self.supported_languages else None

    def _script_hint(self, text: str, allowed: Optional[frozenset[str]] = None) -> Optional[str]:
        for pattern, language in self.SCRIPT_HINTS:
            if allowed is not None and language not in allowed:
                continue
            if pattern.search(text):
                return language
        return None

    def fallback_language(self, text: str) -> str:
        """Classify by character ranges only."""
        return self._script_hint(text) or DEFAULT_LANGUAGE

    async def _detect_with_llm(self, text: str) -> Optional[str]:
        if self.llm is None:
            return None
        prompt = self.DETECTION_PROMPT.format(
            text=text[:200], codes=", ".join(self.supported_languages)
        )

        async def _call() -> str:
            return await self.llm.complete(prompt)

        if self.retry_executor is not None:
            response = await self.retry_executor.execute(_call, LANGUAGE_MODEL_POLICY)
        else:
            response = await _call()
        return self._normalize_lang_code(response)

    async def detect_with_metadata(self, text: str) -> LanguageDetectionDetails:
        text = text or ""

        if len(text) < self.short_text_threshold:
            hint = self._script_hint(text, self.FAST_PATH_LANGUAGES)
            if hint is not None:
                return self._finish(LanguageDetectionDetails(hint, "script_hint"))

        try:
            code = await self._detect_with_llm(text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"LLM language detection failed, using script fallback: {e}")
            code = None
        else:
            if code is None and self.llm is not None:
                logger.info("LLM returned an unsupported language code, using script fallback")

        if code is not None:
            return self._finish(LanguageDetectionDetails(code, "llm"))
        return self._finish(
            LanguageDetectionDetails(self.fallback_language(text), "script_fallback")
        )

    def _finish(self, details: LanguageDetectionDetails) -> LanguageDetectionDetails:
        language_detection_total.labels(
            backend=details.backend,
            result=details.language_code,
        ).inc()
        return details

    async def detect(self, text: str) -> str:
        details = await self.detect_with_metadata(text)
        return details.language_code
