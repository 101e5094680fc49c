"""
MarketLink - Custom Exceptions
Typed errors that carry a machine-readable code so callers can branch
without matching on message text.
"""
from datetime import datetime
from enum import Enum
from typing import Optional, Any, Dict


class MarketLinkException(Exception):
    """Base exception for MarketLink."""

    def __init__(
        self,
        message: str = "An error occurred",
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


# =========================
# Provider API Exceptions
# =========================

class ApiErrorCode(str, Enum):
    """Error codes surfaced by adapter operations."""
    INVALID_SYMBOL = "INVALID_SYMBOL"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    NO_DATA = "NO_DATA"
    HTTP_ERROR = "HTTP_ERROR"
    API_ERROR = "API_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"


class ApiError(MarketLinkException):
    """Error reported by (or about) a remote provider API."""

    def __init__(
        self,
        message: str,
        code: ApiErrorCode | str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message=message, code=ApiErrorCode(code), details=details)
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"<ApiError(code={self.code.value}, status={self.status_code}, message={self.message!r})>"


class RateLimitError(ApiError):
    """Provider rate limit exceeded."""

    def __init__(self, message: str, reset_at: datetime, remaining: int = 0):
        super().__init__(message, ApiErrorCode.RATE_LIMIT_EXCEEDED, status_code=429)
        self.reset_at = reset_at
        self.remaining = remaining


class AuthenticationError(ApiError):
    """Provider rejected the credentials."""

    def __init__(self, message: str = "Invalid API credentials"):
        super().__init__(message, ApiErrorCode.AUTHENTICATION_FAILED, status_code=401)


# =========================
# Registry Exceptions
# =========================

class UnsupportedProviderError(MarketLinkException):
    """No adapter is registered for the provider id."""

    def __init__(self, provider_id: str):
        super().__init__(
            message=f"Unsupported provider: {provider_id}",
            code="UNSUPPORTED_PROVIDER",
            details={"provider_id": provider_id},
        )
        self.provider_id = provider_id
