"""
Service layer exceptions and error classification.

Transports raise typed errors; the retry and fallback layers decide on the
ErrorType, never on message text. Message-based inference only applies to
legacy payloads that arrive without an errorType.
"""

import asyncio
import re
from enum import Enum

import httpx


class ErrorType(str, Enum):
    """Error codes carried by ApiResult.error_type."""

    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    FETCH_ERROR = "fetch_error"
    CORS_ERROR = "cors_error"
    SERVER_ERROR = "server_error"  # HTTP 5xx
    RATE_LIMITED = "rate_limited"  # HTTP 429
    OFFLINE = "offline"
    OFFLINE_DELEGATE = "offline_delegate"
    CIRCUIT_OPEN = "circuit_open"
    INVALID_RESPONSE = "invalid_response"
    UNKNOWN_OPERATION = "unknown_operation"
    VALIDATION = "validation"
    AUTH = "auth"
    EXCEPTION = "exception"


RETRYABLE_ERROR_TYPES = frozenset(
    {
        ErrorType.NETWORK_ERROR,
        ErrorType.TIMEOUT,
        ErrorType.FETCH_ERROR,
        ErrorType.CORS_ERROR,
        ErrorType.SERVER_ERROR,
        ErrorType.RATE_LIMITED,
    }
)

# Failures that route the call to the secondary backend
FALLBACK_ERROR_TYPES = frozenset(
    {
        ErrorType.NETWORK_ERROR,
        ErrorType.TIMEOUT,
        ErrorType.FETCH_ERROR,
        ErrorType.CORS_ERROR,
        ErrorType.CIRCUIT_OPEN,
    }
)

# Failures that mean "we could not reach anything"
CONNECTIVITY_ERROR_TYPES = frozenset(
    {ErrorType.NETWORK_ERROR, ErrorType.FETCH_ERROR}
)

_TIMEOUT_PATTERN = re.compile(r"timeout|timed out|abort", re.IGNORECASE)
_CORS_PATTERN = re.compile(r"cors|cross-origin", re.IGNORECASE)
_FETCH_PATTERN = re.compile(r"failed to fetch|fetch", re.IGNORECASE)
_NETWORK_PATTERN = re.compile(r"load failed|network|connection", re.IGNORECASE)
_SERVER_PATTERN = re.compile(r"HTTP 5\d{2}")
_RATE_LIMIT_PATTERN = re.compile(r"HTTP 429")


class ServiceError(Exception):
    """Base exception for service layer errors."""

    error_type: ErrorType = ErrorType.EXCEPTION

    def __init__(
        self,
        message: str,
        backend: str | None = None,
        error_type: ErrorType | None = None,
    ):
        self.backend = backend
        if error_type is not None:
            self.error_type = error_type
        super().__init__(message)


class TransportError(ServiceError):
    """A backend could not be reached or answered with a transport failure."""

    def __init__(
        self,
        message: str,
        backend: str | None = None,
        error_type: ErrorType = ErrorType.NETWORK_ERROR,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, backend=backend, error_type=error_type)


class RequestTimeoutError(TransportError):
    """Request timed out."""

    def __init__(self, backend: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to backend '{backend}' timed out after {timeout}s",
            backend=backend,
            error_type=ErrorType.TIMEOUT,
        )


class RateLimitError(TransportError):
    """Rate limit exceeded."""

    def __init__(self, backend: str, retry_after: float | None = None):
        self.retry_after = retry_after
        msg = f"Rate limit exceeded for backend '{backend}'"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(
            msg, backend=backend, error_type=ErrorType.RATE_LIMITED, status_code=429
        )


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    error_type = ErrorType.CIRCUIT_OPEN

    def __init__(self, backend: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for backend '{backend}', "
            f"retry after {reset_after_seconds:.1f}s",
            backend=backend,
        )


class ValidationError(ServiceError):
    """The backend rejected the request parameters."""

    error_type = ErrorType.VALIDATION


class AuthError(ServiceError):
    """The backend rejected the credentials."""

    error_type = ErrorType.AUTH


class UnknownOperationError(ServiceError):
    """No handler is registered for the operation name."""

    error_type = ErrorType.UNKNOWN_OPERATION

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Operation '{operation}' is not registered")


def infer_error_type(message: str | None) -> ErrorType | None:
    """Classify a legacy, untyped error message."""
    if not message:
        return None
    if _RATE_LIMIT_PATTERN.search(message):
        return ErrorType.RATE_LIMITED
    if _SERVER_PATTERN.search(message):
        return ErrorType.SERVER_ERROR
    if _TIMEOUT_PATTERN.search(message):
        return ErrorType.TIMEOUT
    if _CORS_PATTERN.search(message):
        return ErrorType.CORS_ERROR
    if _FETCH_PATTERN.search(message):
        return ErrorType.FETCH_ERROR
    if _NETWORK_PATTERN.search(message):
        return ErrorType.NETWORK_ERROR
    return None


def classify_exception(exc: BaseException) -> ErrorType:
    """Map an exception to an ErrorType."""
    if isinstance(exc, ServiceError):
        return exc.error_type
    if isinstance(exc, httpx.TimeoutException):
        return ErrorType.TIMEOUT
    if isinstance(exc, httpx.HTTPStatusError):
        return error_type_for_status(exc.response.status_code)
    if isinstance(exc, httpx.NetworkError):
        return ErrorType.NETWORK_ERROR
    if isinstance(exc, httpx.RequestError):
        return ErrorType.FETCH_ERROR
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorType.TIMEOUT
    if isinstance(exc, (ConnectionError, OSError)):
        return ErrorType.NETWORK_ERROR
    return ErrorType.EXCEPTION


def error_type_for_status(status_code: int) -> ErrorType:
    """Map an HTTP status code to an ErrorType."""
    if status_code == 429:
        return ErrorType.RATE_LIMITED
    if status_code >= 500:
        return ErrorType.SERVER_ERROR
    if status_code in (401, 403):
        return ErrorType.AUTH
    if status_code == 408:
        return ErrorType.TIMEOUT
    return ErrorType.VALIDATION


def is_service_exception(exc: BaseException) -> bool:
    """True for failures the resilience layer owns; anything else is a defect."""
    return isinstance(
        exc,
        (
            ServiceError,
            httpx.HTTPError,
            asyncio.TimeoutError,
            TimeoutError,
            ConnectionError,
            OSError,
        ),
    )


def is_critical(exc: BaseException) -> bool:
    """Exceptions in the network / timeout / abort categories."""
    return is_service_exception(exc) and classify_exception(exc) in FALLBACK_ERROR_TYPES
