"""Error taxonomy for the tag suggestion pipeline.

Every error carries a machine-readable ``error_type`` and a ``retryable``
flag. The model client only retries errors whose flag is set.
"""

from typing import Optional


class TagSuggestionError(Exception):
    """Base class for all model API and validation failures."""

    error_type = "unknown_error"
    default_retryable = False

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        if error_type is not None:
            self.error_type = error_type
        self.retryable = self.default_retryable if retryable is None else retryable

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.message!r}, status_code={self.status_code}, "
            f"error_type={self.error_type!r}, retryable={self.retryable})"
        )


class AuthenticationError(TagSuggestionError):
    """Missing or rejected API key."""

    error_type = "invalid_api_key"

    def __init__(
        self,
        message: str = "Invalid or missing Anthropic API key",
        status_code: Optional[int] = 401,
    ):
        super().__init__(message, status_code=status_code)


class RateLimitError(TagSuggestionError):
    error_type = "rate_limit"
    default_retryable = True

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[float] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after  # seconds


class ServerError(TagSuggestionError):
    error_type = "server_error"
    default_retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code)


class RequestTimeoutError(TagSuggestionError):
    error_type = "timeout"
    default_retryable = True

    def __init__(self, message: str = "Request timeout"):
        super().__init__(message)


class NetworkError(TagSuggestionError):
    error_type = "network_error"
    default_retryable = True


class ApiError(TagSuggestionError):
    """Non-2xx response that is neither auth, rate limit nor server side."""

    error_type = "api_error"


class ResponseValidationError(TagSuggestionError):
    """The model reply was malformed or violated the suggestion schema."""

    error_type = "validation_error"


class UnknownError(TagSuggestionError):
    error_type = "unknown_error"
