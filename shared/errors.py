"""
Shared error handling for the distributed rate limiter.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class RateLimiterException(Exception):
    """Base exception for the rate limiter."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(RateLimiterException):
    """Invalid limiter options or settings."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class ContentionExceeded(RateLimiterException):
    """The counter lock could not be acquired within the retry budget.

    This is a hard error, not an over-limit answer: the caller's token was
    not withdrawn.
    """

    def __init__(self, message: str = "Max. number of retries reached", details: Optional[Dict[str, Any]] = None):
        super().__init__("MAX_RETRY", message, details)


class StoreError(RateLimiterException):
    """The key-value store failed to execute a batch."""

    def __init__(self, message: str = "Store operation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_ERROR", message, details)
