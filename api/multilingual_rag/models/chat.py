from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "model"]
    content: str


class ChatRequest(BaseModel):
    message: str = Field(..., max_length=4000)
    chat_history: Optional[List[ChatMessage]] = None
    target_language: Optional[str] = Field(
        default=None, description="Answer language override (th, en, ko, zh)"
    )

    model_config = {"extra": "allow"}  # Allow extra fields in the request payload


class ChatImage(BaseModel):
    url: str
    caption: str


class ChatResponse(BaseModel):
    answer: str
    detected_language: str
    target_language: str
    evidence_used: bool
    images: List[ChatImage] = Field(default_factory=list)
    from_cache: bool
    translated_query: Optional[str] = None
    response_time_ms: float


class LanguageInfo(BaseModel):
    code: str
    name: str
    flag: str
    greeting: str


class LanguagesResponse(BaseModel):
    languages: List[LanguageInfo]
    default: str
