"""
Pytest configuration and fixtures for the multilingual RAG API.

This module provides:
- Test settings with an isolated data directory
- A retry executor that never really sleeps
- A controllable clock for TTL tests
- Fake catalog records and SQLite paths under tmp_path
"""

from typing import Generator, List
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from multilingual_rag.core.config import Settings
from multilingual_rag.services.interfaces import ImageRecord
from multilingual_rag.services.retry import (
    FILE_SEARCH_POLICY,
    LANGUAGE_MODEL_POLICY,
    TRANSLATION_POLICY,
    RetryExecutor,
    RetryPolicy,
)


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings pointing at a temporary data directory.

    Args:
        tmp_path: pytest temporary directory

    Returns:
        Settings: Configured settings instance for testing
    """
    return Settings(
        DEBUG=True,
        DATA_DIR=str(tmp_path / "data"),
        OPENAI_API_KEY="test-api-key",
        ENVIRONMENT="testing",
        MAX_CHAT_HISTORY_LENGTH=5,
    )


@pytest.fixture
def retry_policies() -> List[RetryPolicy]:
    """The default named policies."""
    return [
        RetryPolicy(
            name=LANGUAGE_MODEL_POLICY,
            max_attempts=3,
            initial_delay=1.0,
            max_delay=10.0,
            backoff_multiplier=2.0,
            retryable_error_signatures=frozenset(
                {"rate limit", "timeout", "timed out", "service unavailable", "503", "429"}
            ),
        ),
        RetryPolicy(
            name=TRANSLATION_POLICY,
            max_attempts=2,
            initial_delay=0.5,
            max_delay=10.0,
            backoff_multiplier=2.0,
            retryable_error_signatures=frozenset({"timeout", "timed out", "connection reset"}),
        ),
        RetryPolicy(
            name=FILE_SEARCH_POLICY,
            max_attempts=3,
            initial_delay=1.0,
            max_delay=10.0,
            backoff_multiplier=2.0,
            retryable_error_signatures=frozenset(
                {"timeout", "timed out", "service unavailable", "503"}
            ),
        ),
    ]


@pytest.fixture
def fake_sleep() -> AsyncMock:
    return AsyncMock(return_value=None)


@pytest.fixture
def retry_executor(retry_policies, fake_sleep) -> RetryExecutor:
    """Executor with the default policies and a recorded, instant sleep."""
    return RetryExecutor(retry_policies, sleep=fake_sleep)


@pytest.fixture
def sample_images() -> List[ImageRecord]:
    return [
        ImageRecord(
            id="img-1",
            category="srs-room",
            storage_url="https://cdn.example.com/room-1.png",
            caption="ห้องพักผู้ป่วยแบบเดี่ยว",
            tags=["ห้องพัก", "room"],
        ),
        ImageRecord(
            id="img-2",
            category="srs-room",
            storage_url="https://cdn.example.com/room-2.png",
            caption="ห้องพักฟื้นหลังผ่าตัด",
            extracted_text="Recovery room",
        ),
        ImageRecord(
            id="img-3",
            category="srs-room",
            storage_url="https://cdn.example.com/room-3.png",
            caption=None,
            tags=["lobby"],
        ),
    ]


@pytest.fixture
def fake_catalog(sample_images) -> MagicMock:
    catalog = MagicMock()
    catalog.fetch_active = AsyncMock(return_value=list(sample_images))
    return catalog


@pytest.fixture
def test_client(test_settings: Settings) -> Generator[TestClient, None, None]:
    """FastAPI test client without running the lifespan.

    Tests attach their own pipeline to ``app.state.pipeline``.
    """
    # Import app here to avoid triggering Settings validation at module load time
    from multilingual_rag.core.config import get_settings
    from multilingual_rag.main import app

    app.dependency_overrides[get_settings] = lambda: test_settings
    client = TestClient(app, raise_server_exceptions=False)
    yield client
    app.dependency_overrides.clear()
    app.state.pipeline = None
