"""
Centralized error handlers for the multilingual support API.

This module provides consistent error handling and formatting
for all application exceptions. Messages returned to the client are
apologies in the caller's language; technical details stay in the logs.
"""

import logging
from typing import Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from multilingual_rag.core.exceptions import BaseAppException, RemoteServiceError

logger = logging.getLogger(__name__)

# Seconds a client should wait before retrying after a 503
RETRY_AFTER_SECONDS = 60

ERROR_MESSAGES: dict[str, dict[str, str]] = {
    "SERVICE_UNAVAILABLE": {
        "th": "ขออภัย ระบบขัดข้องชั่วคราว กรุณาลองใหม่ใน 1-2 นาที",
        "en": "Sorry, the service is temporarily unavailable. Please try again in 1-2 minutes.",
        "ko": "죄송합니다. 서비스가 일시적으로 사용할 수 없습니다. 1-2분 후에 다시 시도해 주세요.",
        "zh": "抱歉，服务暂时不可用。请在1-2分钟后重试。",
    },
    "TRANSLATION_FAILED": {
        "th": "ขออภัย ไม่สามารถแปลภาษาได้ กรุณาลองใหม่",
        "en": "Sorry, translation failed. Please try again.",
        "ko": "죄송합니다. 번역에 실패했습니다. 다시 시도해 주세요.",
        "zh": "抱歉，翻译失败。请重试。",
    },
    "FILE_SEARCH_FAILED": {
        "th": "ขออภัย ไม่สามารถค้นหาข้อมูลได้ กรุณาลองใหม่",
        "en": "Sorry, couldn't search for information. Please try again.",
        "ko": "죄송합니다. 정보를 검색할 수 없습니다. 다시 시도해 주세요.",
        "zh": "抱歉，无法搜索信息。请重试。",
    },
    "RATE_LIMIT": {
        "th": "ขออภัย คุณส่งข้อความเร็วเกินไป กรุณารอสักครู่",
        "en": "Sorry, you're sending messages too quickly. Please wait a moment.",
        "ko": "죄송합니다. 메시지를 너무 빨리 보내고 있습니다. 잠시 기다려 주세요.",
        "zh": "抱歉，您发送消息过快。请稍候。",
    },
    "VALIDATION_ERROR": {
        "th": "ขออภัย ข้อความไม่ถูกต้อง กรุณาตรวจสอบและลองใหม่",
        "en": "Sorry, the request was invalid. Please check your message and try again.",
        "ko": "죄송합니다. 요청이 올바르지 않습니다. 메시지를 확인하고 다시 시도해 주세요.",
        "zh": "抱歉，请求无效。请检查您的消息后重试。",
    },
    "INTERNAL_ERROR": {
        "th": "ขออภัย เกิดข้อผิดพลาดภายใน กรุณาลองใหม่",
        "en": "Sorry, an internal error occurred. Please try again.",
        "ko": "죄송합니다. 내부 오류가 발생했습니다. 다시 시도해 주세요.",
        "zh": "抱歉，发生内部错误。请重试。",
    },
}

_SUPPORTED_ERROR_LANGUAGES = ("th", "en", "ko", "zh")


def get_error_message(error_code: str, lang: str = "en") -> str:
    """Return the apology for an error code in the given language.

    Unknown codes fall back to INTERNAL_ERROR and unknown languages to English.
    """
    messages = ERROR_MESSAGES.get(error_code) or ERROR_MESSAGES["INTERNAL_ERROR"]
    return messages.get(lang) or messages["en"]


def resolve_client_language(request: Request) -> str:
    """Pick the response language from the Accept-Language header."""
    header = request.headers.get("accept-language") or "en"
    primary = header.split(",")[0].strip()[:2].lower()
    return primary if primary in _SUPPORTED_ERROR_LANGUAGES else "en"


def _message_key(exc: BaseAppException) -> str:
    """Map an exception onto the ERROR_MESSAGES vocabulary."""
    if exc.error_code.startswith("VALIDATION_ERROR"):
        return "VALIDATION_ERROR"
    if exc.status_code == status.HTTP_429_TOO_MANY_REQUESTS:
        return "RATE_LIMIT"
    if isinstance(exc, RemoteServiceError):
        if exc.status_code == status.HTTP_503_SERVICE_UNAVAILABLE:
            return "SERVICE_UNAVAILABLE"
        if exc.service == "TRANSLATION":
            return "TRANSLATION_FAILED"
        if exc.service == "FILE_SEARCH":
            return "FILE_SEARCH_FAILED"
    if exc.error_code in ERROR_MESSAGES:
        return exc.error_code
    return "INTERNAL_ERROR"


def _error_body(
    code: str, message: str, status_code: int, retry_after: Optional[int]
) -> dict:
    error = {"code": code, "message": message, "status_code": status_code}
    if retry_after is not None:
        error["retry_after"] = retry_after
    return {"error": error}


async def base_exception_handler(
    request: Request, exc: BaseAppException
) -> JSONResponse:
    """Handle all application-specific exceptions.

    Args:
        request: The incoming request that caused the exception
        exc: The application exception that was raised

    Returns:
        JSON response with standardized error format and a localized message
    """
    logger.error(
        f"Application error: {exc.error_code} - {exc.detail}",
        extra={
            "error_code": exc.error_code,
            "status_code": exc.status_code,
            "path": request.url.path,
            "method": request.method,
        },
    )

    lang = resolve_client_language(request)
    retry_after = (
        RETRY_AFTER_SECONDS
        if exc.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        else None
    )
    headers = dict(exc.headers or {})
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(
            exc.error_code,
            get_error_message(_message_key(exc), lang),
            exc.status_code,
            retry_after,
        ),
        headers=headers or None,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected errors.

    Args:
        request: The incoming request that caused the exception
        exc: The unhandled exception that was raised

    Returns:
        JSON response with generic error message (no sensitive details)
    """
    logger.exception(
        f"Unhandled exception: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "exception_type": type(exc).__name__,
        },
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            "INTERNAL_ERROR",
            get_error_message("INTERNAL_ERROR", resolve_client_language(request)),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            None,
        ),
    )
