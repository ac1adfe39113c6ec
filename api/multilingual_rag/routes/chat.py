import logging
import time

from fastapi import APIRouter, Depends, Request
from prometheus_client import Gauge, Histogram

from multilingual_rag.core.config import Settings, get_settings
from multilingual_rag.core.exceptions import BaseAppException
from multilingual_rag.models.chat import (
    ChatImage,
    ChatRequest,
    ChatResponse,
    LanguageInfo,
    LanguagesResponse,
)
from multilingual_rag.services.chat_pipeline import ChatPipeline
from multilingual_rag.services.translation.language_detector import (
    DEFAULT_LANGUAGE,
    LANGUAGE_NAMES,
    get_greeting,
)

router = APIRouter()
logger = logging.getLogger(__name__)

CHAT_RESPONSE_TIME_HISTOGRAM = Histogram(
    "chat_response_time_seconds",
    "Response time distribution for chat requests",
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)
CURRENT_RESPONSE_TIME = Gauge(
    "chat_current_response_time_seconds", "Latest chat response time"
)

LANGUAGE_FLAGS = {
    "th": "🇹🇭",
    "en": "🇬🇧",
    "ko": "🇰🇷",
    "zh": "🇨🇳",
}


def get_chat_pipeline(request: Request) -> ChatPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise BaseAppException(
            "Chat pipeline is not initialized yet",
            status_code=503,
            error_code="SERVICE_UNAVAILABLE",
        )
    return pipeline


@router.post("/chat", response_model=ChatResponse)
async def chat(
    chat_request: ChatRequest,
    pipeline: ChatPipeline = Depends(get_chat_pipeline),
):
    """Answer a question in the user's language, with images when asked for."""
    start_time = time.time()

    result = await pipeline.process(
        chat_request.message,
        chat_request.chat_history,
        target_language=chat_request.target_language,
    )

    total_time = time.time() - start_time
    CHAT_RESPONSE_TIME_HISTOGRAM.observe(total_time)
    CURRENT_RESPONSE_TIME.set(total_time)

    return ChatResponse(
        answer=result.answer,
        detected_language=result.detected_language,
        target_language=result.target_language,
        evidence_used=result.evidence_used,
        images=[ChatImage(**image) for image in result.images],
        from_cache=result.from_cache,
        translated_query=result.translated_query,
        response_time_ms=result.response_time_ms,
    )


@router.get("/chat/languages", response_model=LanguagesResponse)
async def list_languages(settings: Settings = Depends(get_settings)):
    """Languages the assistant can answer in."""
    languages = [
        LanguageInfo(
            code=code,
            name=LANGUAGE_NAMES.get(code, code),
            flag=LANGUAGE_FLAGS.get(code, ""),
            greeting=get_greeting(code),
        )
        for code in settings.SUPPORTED_LANGUAGES
    ]
    return LanguagesResponse(languages=languages, default=DEFAULT_LANGUAGE)
