import logging
import os
from functools import lru_cache
from pathlib import Path

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _split_csv(v: str | list[str]) -> list[str]:
    """Normalize a comma-separated string or list into a list of stripped strings."""
    if isinstance(v, list):
        return [item.strip() for item in v if isinstance(item, str) and item.strip()]
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return []


class Settings(BaseSettings):
    # API settings
    DEBUG: bool = False
    PROJECT_NAME: str = "Multilingual Support Assistant"
    ENVIRONMENT: str = "development"

    # CORS settings - accepts string or list, normalized to list[str] by validator
    CORS_ORIGINS: str | list[str] = "*"

    # Directory settings
    DATA_DIR: str = "api/data"

    # LLM settings (AISuite "provider:model" identifiers)
    OPENAI_API_KEY: str = ""
    LLM_MODEL: str = "openai:gpt-4o-mini"  # Grounded answer generation
    DETECTION_MODEL: str = (
        "openai:gpt-4o-mini"  # Detection, translation and classification calls
    )
    MAX_TOKENS: int = 8192
    LLM_TEMPERATURE: float = 0.3
    GROUNDING_MAX_TURNS: int = 3  # Tool-calling rounds for document retrieval

    # Language settings
    SUPPORTED_LANGUAGES: str | list[str] = "th,en,ko,zh"
    # All retrieval happens in this language; must follow SUPPORTED_LANGUAGES
    PIVOT_LANGUAGE: str = "th"
    SHORT_TEXT_THRESHOLD: int = 10  # Below this length try the script classifier first

    # Translation cache
    TRANSLATION_CACHE_MAX_SIZE: int = 1000
    TRANSLATION_CACHE_TTL_MINUTES: int = 120
    TRANSLATION_DURABLE_TTL_HOURS: int = 168  # 7 days

    # Search result cache
    SEARCH_CACHE_MAX_SIZE: int = 500
    SEARCH_CACHE_TTL_MINUTES: int = 60
    SEARCH_DURABLE_TTL_MINUTES: int = 60

    # Durable tier (SQLite) shared by both caches, namespaced by cache type
    DURABLE_CACHE_ENABLED: bool = True

    # Retry policy: detection and classification calls
    RETRY_LANGUAGE_MODEL_MAX_ATTEMPTS: int = 3
    RETRY_LANGUAGE_MODEL_INITIAL_DELAY: float = 1.0
    RETRY_LANGUAGE_MODEL_MAX_DELAY: float = 10.0
    RETRY_LANGUAGE_MODEL_BACKOFF: float = 2.0
    RETRY_LANGUAGE_MODEL_ERRORS: str | list[str] = (
        "rate limit,timeout,timed out,service unavailable,connection reset,503,429"
    )

    # Retry policy: translation calls
    RETRY_TRANSLATION_MAX_ATTEMPTS: int = 2
    RETRY_TRANSLATION_INITIAL_DELAY: float = 0.5
    RETRY_TRANSLATION_MAX_DELAY: float = 10.0
    RETRY_TRANSLATION_BACKOFF: float = 2.0
    RETRY_TRANSLATION_ERRORS: str | list[str] = "timeout,timed out,connection reset"

    # Retry policy: retrieval + generation call
    RETRY_FILE_SEARCH_MAX_ATTEMPTS: int = 3
    RETRY_FILE_SEARCH_INITIAL_DELAY: float = 1.0
    RETRY_FILE_SEARCH_MAX_DELAY: float = 10.0
    RETRY_FILE_SEARCH_BACKOFF: float = 2.0
    RETRY_FILE_SEARCH_ERRORS: str | list[str] = (
        "timeout,timed out,service unavailable,503"
    )

    # Pipeline settings
    UNGROUNDED_RETRY_COUNT: int = 1  # Stricter-instruction retries when no evidence
    MAX_CHAT_HISTORY_LENGTH: int = 10
    DOCUMENT_STORE_NAME: str = "knowledge-base"
    DOCUMENT_SEARCH_LIMIT: int = 5
    MAX_SAMPLE_LOG_LENGTH: int = 100  # Maximum length of user text in log lines

    # Image augmentation
    IMAGE_SEARCH_ENABLED: bool = True
    IMAGE_MAX_RESULTS: int = 3
    IMAGE_FETCH_LIMIT: int = 200
    IMAGE_CATEGORIES: str | list[str] = (
        "srs-tec,srs-review,srs-doctor,srs-package,srs-room,srs-operatingroom"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="allow",
    )

    # Path properties that return complete paths
    @property
    def CACHE_DB_PATH(self) -> str:
        """Complete path to the durable cache database"""
        return os.path.join(self.DATA_DIR, "cache.db")

    @property
    def IMAGE_DB_PATH(self) -> str:
        """Complete path to the image catalog database"""
        return os.path.join(self.DATA_DIR, "images.db")

    @property
    def DOCUMENT_DB_PATH(self) -> str:
        """Complete path to the document store database"""
        return os.path.join(self.DATA_DIR, "documents.db")

    def get_data_path(self, *path_parts) -> str:
        """Utility method to construct paths within DATA_DIR"""
        return os.path.join(self.DATA_DIR, *path_parts)

    @field_validator("LLM_TEMPERATURE")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        """Validate LLM temperature is within acceptable range.

        Raises:
            ValueError: If temperature is outside acceptable range
        """
        if not 0.0 <= v <= 2.0:
            raise ValueError(f"LLM_TEMPERATURE must be between 0.0 and 2.0, got {v}")
        return v

    @field_validator("LLM_MODEL", "DETECTION_MODEL")
    @classmethod
    def validate_model_id(cls, v: str) -> str:
        """Require AISuite "provider:model" identifiers."""
        v = v.strip()
        if ":" not in v:
            raise ValueError(
                f"Model must use 'provider:model' format (e.g. 'openai:gpt-4o-mini'), got {v!r}"
            )
        return v

    @field_validator(
        "RETRY_LANGUAGE_MODEL_MAX_ATTEMPTS",
        "RETRY_TRANSLATION_MAX_ATTEMPTS",
        "RETRY_FILE_SEARCH_MAX_ATTEMPTS",
    )
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Retry max attempts must be at least 1, got {v}")
        return v

    @field_validator("UNGROUNDED_RETRY_COUNT")
    @classmethod
    def validate_ungrounded_retry_count(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"UNGROUNDED_RETRY_COUNT must be >= 0, got {v}")
        return v

    @field_validator(
        "SUPPORTED_LANGUAGES",
        "IMAGE_CATEGORIES",
        "RETRY_LANGUAGE_MODEL_ERRORS",
        "RETRY_TRANSLATION_ERRORS",
        "RETRY_FILE_SEARCH_ERRORS",
        mode="before",
    )
    @classmethod
    def parse_csv_lists(cls, v: str | list[str]) -> list[str]:
        """Accept either a comma-separated string or a list of strings."""
        return _split_csv(v)

    @field_validator("SUPPORTED_LANGUAGES")
    @classmethod
    def normalize_language_codes(cls, v: list[str]) -> list[str]:
        return [code.lower() for code in v]

    @field_validator("PIVOT_LANGUAGE")
    @classmethod
    def validate_pivot_language(cls, v: str, info: ValidationInfo) -> str:
        """Ensure the pivot language is one of the supported languages."""
        v = v.strip().lower()
        supported = info.data.get("SUPPORTED_LANGUAGES") or []
        if supported and v not in supported:
            raise ValueError(
                f"PIVOT_LANGUAGE {v!r} must be one of SUPPORTED_LANGUAGES {supported}"
            )
        return v

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        """Normalize CORS_ORIGINS to list of hosts."""
        if isinstance(v, str) and v.strip() == "*":
            return ["*"]
        return _split_csv(v)

    @classmethod
    def _is_production(cls, info: ValidationInfo) -> bool:
        raw_env = info.data.get("ENVIRONMENT", "development")
        environment = str(raw_env).strip().lower()
        if environment in {"prod"}:
            environment = "production"
        return environment == "production"

    @field_validator("CORS_ORIGINS")
    @classmethod
    def validate_cors_in_production(cls, v: list[str], info) -> list[str]:
        """Reject wildcard CORS in production environments."""
        if cls._is_production(info) and v == ["*"]:
            raise ValueError("CORS wildcard '*' not allowed in production")
        return v

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Make paths absolute
        self.DATA_DIR = os.path.abspath(self.DATA_DIR)

    def ensure_data_dirs(self) -> None:
        """Create required data directories if they don't exist.

        Called during application startup (lifespan) to avoid import-time I/O.
        """
        Path(self.DATA_DIR).mkdir(parents=True, exist_ok=True)


# Thread-safe lazy initialization using lru_cache
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings instance with lazy initialization.

    Returns:
        Settings: Application settings object
    """
    return Settings()


def reset_settings() -> None:
    """Reset the cached settings instance (used by tests)."""
    get_settings.cache_clear()
