"""
Core package for the search core.

Re-exports configuration and the error taxonomy so callers can import them
from ``presearch_core.core`` without knowing the module layout.
"""

from .config import (
    DEFAULT_BASE_URL,
    DEFAULT_NODE_BASE_URL,
    CacheSettings,
    CircuitBreakerSettings,
    FetcherSettings,
    PresearchConfig,
    ProcessingSettings,
    RateLimitSettings,
    RetrySettings,
)
from .errors import (
    ApiError,
    AuthenticationError,
    CircuitOpenError,
    ErrorKind,
    NetworkError,
    PresearchError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    ValidationError,
    categorize_error,
)

__all__ = [
    "DEFAULT_BASE_URL",
    "DEFAULT_NODE_BASE_URL",
    "CacheSettings",
    "CircuitBreakerSettings",
    "FetcherSettings",
    "PresearchConfig",
    "ProcessingSettings",
    "RateLimitSettings",
    "RetrySettings",
    "ApiError",
    "AuthenticationError",
    "CircuitOpenError",
    "ErrorKind",
    "NetworkError",
    "PresearchError",
    "RateLimitError",
    "RequestTimeoutError",
    "ServerError",
    "ValidationError",
    "categorize_error",
]
