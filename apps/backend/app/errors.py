"""
Error taxonomy for the pipeline.

HTTP mapping lives in main.py: AuthError -> 401, ConfigurationError -> 503,
StorageError and anything unexpected -> 500 with a sanitized body.
"""
from typing import Optional


class PipelineError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(PipelineError):
    """A required secret, key or URL is not configured."""


class AuthError(PipelineError):
    """Missing or invalid caller credentials."""


class StorageError(PipelineError):
    """The backing store is unreachable or rejected a statement."""


class UpstreamError(PipelineError):
    """An external service (ATS API, search API, AI service) failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    def user_message(self) -> str:
        """Message safe to hand back to an end user."""
        if self.status_code == 429:
            return "Service is busy. Please try again in a moment."
        if self.status_code in (401, 403):
            return "Service configuration error."
        if self.status_code is not None and self.status_code >= 500:
            return "External service unavailable. Please try again later."
        return "Failed to fetch job details."


class AIRateLimitError(UpstreamError):
    """AI service refused the call for rate limit (429) or exhausted credits (402)."""
