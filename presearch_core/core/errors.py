"""
Error taxonomy for upstream calls and result processing.

Every failure that crosses a component boundary is one of the
``PresearchError`` subclasses below.  Each carries an :class:`ErrorKind` so
retry decisions can be made on the kind alone, without matching on exception
types or message text.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Dict, Optional

import aiohttp


class ErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    SERVER = "server"
    API = "api"
    CIRCUIT_OPEN = "circuit_open"
    PROCESSING = "processing"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE_KINDS


_RETRYABLE_KINDS = frozenset(
    {ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT, ErrorKind.SERVER}
)


class PresearchError(Exception):
    """Base class for all typed errors raised by the core."""

    kind: ErrorKind = ErrorKind.API

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.details: Dict[str, Any] = dict(details or {})

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": type(self).__name__,
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.status is not None:
            payload["status"] = self.status
        if self.details:
            payload["details"] = self.details
        return payload


class NetworkError(PresearchError):
    """DNS resolution or connection failure."""

    kind = ErrorKind.NETWORK


class RequestTimeoutError(PresearchError):
    kind = ErrorKind.TIMEOUT


class RateLimitError(PresearchError):
    """Local throttle exceeded or upstream answered 429."""

    kind = ErrorKind.RATE_LIMIT

    def __init__(self, message: str = "Rate limit exceeded", *, retry_after: Optional[float] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class AuthenticationError(PresearchError):
    """Upstream answered 401 or 403."""

    kind = ErrorKind.AUTHENTICATION


class ValidationError(PresearchError):
    """Malformed input caught before any network call."""

    kind = ErrorKind.VALIDATION


class ServerError(PresearchError):
    kind = ErrorKind.SERVER


class ApiError(PresearchError):
    """Any other non-retryable 4xx answer."""

    kind = ErrorKind.API


class CircuitOpenError(PresearchError):
    """Raised without a network attempt while the circuit breaker is open."""

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, message: str, *, retry_after: Optional[float] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


_ERROR_BY_KIND = {
    ErrorKind.NETWORK: NetworkError,
    ErrorKind.TIMEOUT: RequestTimeoutError,
    ErrorKind.RATE_LIMIT: RateLimitError,
    ErrorKind.AUTHENTICATION: AuthenticationError,
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.SERVER: ServerError,
    ErrorKind.API: ApiError,
    ErrorKind.CIRCUIT_OPEN: CircuitOpenError,
}


def error_for_kind(kind: ErrorKind, message: str, **kwargs: Any) -> PresearchError:
    """Build the exception class that corresponds to ``kind``."""
    cls = _ERROR_BY_KIND.get(kind, PresearchError)
    return cls(message, **kwargs)


def kind_for_status(status: int) -> ErrorKind:
    """Map an HTTP status code to an error kind."""
    if status == 429:
        return ErrorKind.RATE_LIMIT
    if status in (401, 403):
        return ErrorKind.AUTHENTICATION
    if status == 408:
        return ErrorKind.TIMEOUT
    if status == 400 or status == 422:
        return ErrorKind.VALIDATION
    if status >= 500:
        return ErrorKind.SERVER
    return ErrorKind.API


def kind_for_exception(exc: BaseException) -> ErrorKind:
    """Map a transport-level exception to an error kind."""
    if isinstance(exc, PresearchError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, aiohttp.ClientResponseError):
        return kind_for_status(exc.status)
    if isinstance(exc, (aiohttp.ClientError, OSError)):
        return ErrorKind.NETWORK
    return ErrorKind.PROCESSING


_SEVERITY = {
    ErrorKind.RATE_LIMIT: "high",
    ErrorKind.AUTHENTICATION: "high",
    ErrorKind.SERVER: "high",
    ErrorKind.CIRCUIT_OPEN: "high",
    ErrorKind.NETWORK: "medium",
    ErrorKind.TIMEOUT: "medium",
    ErrorKind.API: "medium",
    ErrorKind.VALIDATION: "low",
    ErrorKind.PROCESSING: "low",
}

_CATEGORY = {
    ErrorKind.NETWORK: "NETWORK_ERROR",
    ErrorKind.TIMEOUT: "TIMEOUT_ERROR",
    ErrorKind.RATE_LIMIT: "RATE_LIMIT_ERROR",
    ErrorKind.AUTHENTICATION: "AUTHENTICATION_ERROR",
    ErrorKind.VALIDATION: "VALIDATION_ERROR",
    ErrorKind.SERVER: "API_ERROR",
    ErrorKind.API: "API_ERROR",
    ErrorKind.CIRCUIT_OPEN: "CIRCUIT_OPEN_ERROR",
    ErrorKind.PROCESSING: "SOURCE_ERROR",
}


def categorize_error(exc: BaseException) -> Dict[str, Any]:
    """Describe ``exc`` as the structured error block returned to callers."""
    kind = kind_for_exception(exc)
    details: Dict[str, Any] = {"errorMessage": str(exc), "errorType": type(exc).__name__}
    if isinstance(exc, PresearchError):
        if exc.status is not None:
            details["status"] = exc.status
        details.update(exc.details)
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            details["retryAfter"] = retry_after
    retryable = kind.retryable if kind is not ErrorKind.PROCESSING else False
    return {
        "category": _CATEGORY[kind],
        "kind": kind.value,
        "severity": _SEVERITY[kind],
        "retryable": retryable,
        "message": str(exc) or kind.value,
        "details": details,
    }
