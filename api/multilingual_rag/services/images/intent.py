"""Image intent classification and the localized text used when merging images.

The language model answers yes/no questions about the user's message. When
it is unavailable or every attempt fails, a multilingual keyword list
decides instead, so classification never raises.
"""

import asyncio
import logging
import re
from typing import Optional, Sequence

from multilingual_rag.services.interfaces import TextCompletionService
from multilingual_rag.services.retry import LANGUAGE_MODEL_POLICY, RetryExecutor

logger = logging.getLogger(__name__)

# Used when no model is configured at all
IMAGE_INDICATORS = (
    "รูป", "ภาพ", "รูปภาพ", "ตัวอย่าง", "before", "after", "ก่อน", "หลัง",
    "ผลลัพธ์", "เคส", "case", "รีวิว", "ดู", "แสดง",
    "image", "photo", "picture", "example", "result", "review",
    "show", "visual", "diagram", "illustration",
    "사진", "이미지", "보여주", "그림",
    "图片", "照片", "图像", "显示",
)

# Used when the model call failed; narrower to avoid false positives
FALLBACK_IMAGE_INDICATORS = (
    "รูป", "ภาพ", "image", "photo", "picture", "사진", "이미지", "图片", "照片",
)

IMAGE_ONLY_INDICATORS = (
    "ขอดูรูป", "ขอรูป", "ขอภาพ", "ดูรูป", "ขอดูภาพ", "รูปอย่างเดียว",
    "show me", "only images", "only photos", "just the pictures", "just photos",
    "사진만", "사진 보여", "이미지만",
    "给我看", "只要图片", "只看图片",
)

# Phrases a text answer uses to say no pictures exist
NO_IMAGE_PHRASES = (
    "ไม่มีรูป", "ไม่มีภาพ", "ไม่พบรูป", "ไม่พบภาพ", "ไม่สามารถแสดงรูป",
    "ไม่สามารถแสดงภาพ", "ไม่สามารถส่งรูป",
    "no image", "no images", "no photo", "no photos", "no picture",
    "no pictures", "cannot show images", "can't show images",
    "unable to show images", "unable to display images",
    "사진이 없", "이미지가 없", "사진을 보여드릴 수 없",
    "没有图片", "没有照片", "无法显示图片", "无法提供图片",
)

IMAGE_INTRO_TEMPLATES = {
    "th": "นี่คือรูปภาพที่เกี่ยวข้องค่ะ",
    "en": "Here are the related images.",
    "ko": "관련 이미지입니다.",
    "zh": "以下是相关图片。",
}

DEFAULT_CAPTION_TEMPLATES = {
    "th": "จากหมวดหมู่ {category}",
    "en": "From category {category}",
    "ko": "{category} 카테고리",
    "zh": "来自类别 {category}",
}

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?。！？\n])\s*")
_THAI_RE = re.compile(r"[\u0E00-\u0E7F]")

# Apology clauses that lead into a Thai denial; dropped together with it
THAI_APOLOGY_PREFIXES = ("ขออภัย", "ขอโทษ", "เสียใจ")


def _contains_any(text: str, phrases: Sequence[str]) -> bool:
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in phrases)


def contains_no_image_phrase(answer: str) -> bool:
    return _contains_any(answer, NO_IMAGE_PHRASES)


def _strip_thai_clauses(sentence: str) -> str:
    # Thai separates clauses with spaces instead of punctuation
    clauses = sentence.split()
    if not any(contains_no_image_phrase(c) for c in clauses):
        return ""

    kept = []
    for clause in clauses:
        if contains_no_image_phrase(clause):
            while kept and kept[-1].startswith(THAI_APOLOGY_PREFIXES):
                kept.pop()
            continue
        kept.append(clause)
    return " ".join(kept)


def strip_no_image_sentences(answer: str) -> str:
    """Drop every sentence that claims no images are available.

    Thai sentences lose only the denial clause (and the apology leading
    into it), so facts sharing the sentence survive.
    """
    sentences = [s for s in _SENTENCE_SPLIT_RE.split(answer or "") if s.strip()]
    kept = []
    for sentence in sentences:
        if not contains_no_image_phrase(sentence):
            kept.append(sentence.strip())
        elif _THAI_RE.search(sentence):
            remainder = _strip_thai_clauses(sentence)
            if remainder:
                kept.append(remainder)
    return " ".join(kept)


def image_intro(language: str) -> str:
    return IMAGE_INTRO_TEMPLATES.get(language, IMAGE_INTRO_TEMPLATES["en"])


def default_caption(category: str, language: str = "th") -> str:
    template = DEFAULT_CAPTION_TEMPLATES.get(language, DEFAULT_CAPTION_TEMPLATES["th"])
    return template.format(category=category)


class ImageIntentClassifier:
    """Decide whether a message asks for pictures, and whether only for pictures."""

    IMAGE_REQUEST_PROMPT = """Analyze this user message and determine if they are requesting to see/view images or photos.

User message: "{message}"

This could be in ANY language (Thai, English, Korean, Chinese, etc.).

Respond with ONLY "true" or "false":
- "true" = User is asking to see images/photos/pictures/diagrams/examples
- "false" = User is NOT asking for images (asking for text information only)

Examples:
- "ขอดูรูป" → true
- "show me images" → true
- "사진 보여주세요" → true
- "给我看图片" → true
- "เทคนิคคืออะไร" → false
- "what is SRS" → false"""

    IMAGE_ONLY_PROMPT = """The user message below asks for images. Decide whether the user wants ONLY images, with no text explanation.

User message: "{message}"

Respond with ONLY "true" or "false":
- "true" = The user only wants to see pictures (e.g. "ขอดูรูปห้องพัก", "show me photos of the room")
- "false" = The user also asks a question that needs a text answer (e.g. "how much is it and can I see photos?")"""

    def __init__(
        self,
        llm: Optional[TextCompletionService] = None,
        retry_executor: Optional[RetryExecutor] = None,
    ):
        self.llm = llm
        self.retry_executor = retry_executor

    async def _ask(self, prompt: str) -> bool:
        async def _call() -> str:
            return await self.llm.complete(prompt)

        if self.retry_executor is not None:
            raw = await self.retry_executor.execute(_call, LANGUAGE_MODEL_POLICY)
        else:
            raw = await _call()
        return (raw or "").strip().strip("\"'.").lower() == "true"

    async def is_image_request(self, message: str) -> bool:
        if self.llm is None:
            return _contains_any(message, IMAGE_INDICATORS)
        try:
            result = await self._ask(self.IMAGE_REQUEST_PROMPT.format(message=message))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Image intent classification failed, using keywords: {e}")
            return _contains_any(message, FALLBACK_IMAGE_INDICATORS)
        logger.info(f"Image intent: {'IMAGE REQUEST' if result else 'TEXT QUERY'}")
        return result

    async def is_image_only(self, message: str) -> bool:
        if self.llm is None:
            return _contains_any(message, IMAGE_ONLY_INDICATORS)
        try:
            return await self._ask(self.IMAGE_ONLY_PROMPT.format(message=message))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Image-only classification failed, using keywords: {e}")
            return _contains_any(message, IMAGE_ONLY_INDICATORS)
