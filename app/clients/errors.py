from __future__ import annotations

from typing import Any, Optional


class GenerationApiError(Exception):
    """Base class for every failure reported by the music generation API."""

    default_message = "Music generation API error"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        body: Any = None,
    ) -> None:
        super().__init__(message or self.default_message)
        self.status_code = status_code
        self.body = body


class AuthenticationError(GenerationApiError):
    default_message = "Invalid API key"


class RateLimitError(GenerationApiError):
    default_message = "Rate limit exceeded"


class QuotaExceededError(GenerationApiError):
    default_message = "Insufficient credits"


class NotFoundError(GenerationApiError):
    default_message = "Resource not found"


class NetworkError(GenerationApiError):
    default_message = "Network error occurred"


class ApiError(GenerationApiError):
    default_message = "Unexpected API response"


class TaskFailedError(GenerationApiError):
    default_message = "Task execution failed"


class PollingTimeoutError(GenerationApiError):
    default_message = "Polling timeout exceeded"


class PromptValidationError(ValueError):
    """Raised locally for prompts the API would reject."""
