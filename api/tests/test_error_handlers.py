"""Tests for the exception hierarchy and localized error messages."""

import pytest
from multilingual_rag.core.error_handlers import (
    ERROR_MESSAGES,
    _message_key,
    get_error_message,
)
from multilingual_rag.core.exceptions import (
    BaseAppException,
    DegradedFeatureError,
    PermanentRemoteError,
    PipelineError,
    TransientRemoteError,
    ValidationError,
)


class TestExceptions:
    def test_remote_service_names_are_controlled(self):
        assert TransientRemoteError("translation", "x").service == "TRANSLATION"
        assert PermanentRemoteError("file_search", "x").service == "FILE_SEARCH"
        assert PermanentRemoteError("something-else", "x").service == "EXTERNAL"

    def test_status_codes(self):
        assert TransientRemoteError("translation", "x").status_code == 503
        assert PermanentRemoteError("translation", "x").status_code == 502
        assert PipelineError("x").status_code == 500
        assert ValidationError("x").status_code == 422

    def test_pipeline_error_records_stage(self):
        error = PipelineError("boom", stage="resolve_answer")

        assert error.stage == "resolve_answer"
        assert error.detail == "Pipeline stage 'resolve_answer' failed: boom"

    def test_degraded_feature_error_is_not_http(self):
        error = DegradedFeatureError("image_augmentation", "catalog unavailable")

        assert not isinstance(error, BaseAppException)
        assert str(error) == "image_augmentation degraded: catalog unavailable"


class TestErrorMessages:
    @pytest.mark.parametrize("code", sorted(ERROR_MESSAGES))
    def test_every_code_has_all_languages(self, code):
        assert set(ERROR_MESSAGES[code]) == {"th", "en", "ko", "zh"}

    def test_fallbacks(self):
        assert get_error_message("NOPE", "th") == ERROR_MESSAGES["INTERNAL_ERROR"]["th"]
        assert get_error_message("RATE_LIMIT", "fr") == ERROR_MESSAGES["RATE_LIMIT"]["en"]

    @pytest.mark.parametrize(
        "exc,expected",
        [
            (TransientRemoteError("file_search", "timeout"), "SERVICE_UNAVAILABLE"),
            (PermanentRemoteError("translation", "bad key"), "TRANSLATION_FAILED"),
            (PermanentRemoteError("file_search", "bad key"), "FILE_SEARCH_FAILED"),
            (PermanentRemoteError("language_model", "bad key"), "INTERNAL_ERROR"),
            (ValidationError("x", field="message"), "VALIDATION_ERROR"),
            (BaseAppException("slow down", status_code=429), "RATE_LIMIT"),
            (PipelineError("x"), "INTERNAL_ERROR"),
        ],
    )
    def test_message_key(self, exc, expected):
        assert _message_key(exc) == expected
