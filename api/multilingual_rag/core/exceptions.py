"""
Custom exception hierarchy for the multilingual support API.

Pipeline failures are typed so the HTTP boundary can map them to a status
code and a localized apology without inspecting the underlying cause.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class BaseAppException(HTTPException):
    """Base exception for all application errors."""

    def __init__(
        self,
        detail: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        headers: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code or self.__class__.__name__


# Data Validation Exceptions


class ValidationError(BaseAppException):
    """Raised when request data validation fails."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = (
            f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        )
        super().__init__(
            detail, status.HTTP_422_UNPROCESSABLE_ENTITY, error_code=error_code
        )


# Remote Service Exceptions


class RemoteServiceError(BaseAppException):
    """Raised when an external AI/search call fails after retries."""

    def __init__(
        self,
        service: str,
        detail: str,
        status_code: int = status.HTTP_502_BAD_GATEWAY,
        error_code: Optional[str] = None,
    ):
        # Map to controlled vocabulary to prevent high cardinality
        service_map = {
            "language_model": "LANGUAGE_MODEL",
            "translation": "TRANSLATION",
            "file_search": "FILE_SEARCH",
        }
        self.service = service_map.get(service.lower(), "EXTERNAL")
        super().__init__(
            f"{service} error: {detail}", status_code, error_code=error_code
        )


class TransientRemoteError(RemoteServiceError):
    """The cause matched a retryable signature but every attempt failed."""

    def __init__(self, service: str, detail: str):
        super().__init__(
            service,
            detail,
            status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="SERVICE_UNAVAILABLE",
        )


class PermanentRemoteError(RemoteServiceError):
    """The external service rejected the call with a non-retryable error."""

    def __init__(self, service: str, detail: str):
        super().__init__(
            service,
            detail,
            status.HTTP_502_BAD_GATEWAY,
            error_code="EXTERNAL_SERVICE_ERROR",
        )


# Pipeline Exceptions


class PipelineError(BaseAppException):
    """Raised for internal faults while processing a chat request."""

    def __init__(self, detail: str, stage: Optional[str] = None):
        self.stage = stage
        prefix = f"Pipeline stage '{stage}' failed" if stage else "Pipeline failed"
        super().__init__(
            f"{prefix}: {detail}",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="INTERNAL_ERROR",
        )


class DegradedFeatureError(Exception):
    """An optional feature failed and was skipped.

    Never raised to callers; instances are built so the failure can be logged
    with a consistent shape before the pipeline carries on without the feature.
    """

    def __init__(self, feature: str, detail: str):
        self.feature = feature
        self.detail = detail
        super().__init__(f"{feature} degraded: {detail}")
