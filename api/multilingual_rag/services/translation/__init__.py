"""Translation package for multilingual support.

This package provides:
- LanguageDetector: Detects input language using script hints + LLM
- TranslationCache: Two-tier (memory + durable) exact-match translation cache
- TranslationService: Cached, retry-wrapped translation between languages
"""

from multilingual_rag.services.translation.cache import TranslationCache
from multilingual_rag.services.translation.language_detector import (
    LANGUAGE_NAMES,
    SUPPORTED_LANGUAGES,
    LanguageDetector,
    get_greeting,
)
from multilingual_rag.services.translation.translation_service import (
    TranslationService,
)

__all__ = [
    "LANGUAGE_NAMES",
    "LanguageDetector",
    "SUPPORTED_LANGUAGES",
    "TranslationCache",
    "TranslationService",
    "get_greeting",
]
