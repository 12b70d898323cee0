"""
Service layer infrastructure - resilience patterns for backend calls.

Provides:
- RequestCache: TTL cache of successful results, prefix invalidation
- RequestScheduler: Cache lookup, in-flight de-duplication, bounded concurrency
- CircuitBreaker: Stops calling a failing backend
- retry_with_backoff: Exponential backoff with jitter
- FallbackOrchestrator (services.fallback): Primary-first with secondary fallback
- ResilientClient (services.client): Everything wired together
"""

from seatsync.services.cache import CacheEntry, CacheStats, RequestCache
from seatsync.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from seatsync.services.clock import Clock, SystemClock
from seatsync.services.errors import (
    AuthError,
    CircuitOpenError,
    ErrorType,
    RateLimitError,
    RequestTimeoutError,
    ServiceError,
    TransportError,
    UnknownOperationError,
    ValidationError,
)
from seatsync.services.notices import LoggingNoticeSink, Notice, NoticeKind, NoticeSink
from seatsync.services.results import ApiResult
from seatsync.services.retry import RetryPolicy, retry_with_backoff
from seatsync.services.scheduler import RequestScheduler

__all__ = [
    # Errors
    "ErrorType",
    "ServiceError",
    "TransportError",
    "RequestTimeoutError",
    "RateLimitError",
    "CircuitOpenError",
    "ValidationError",
    "AuthError",
    "UnknownOperationError",
    # Results / notices
    "ApiResult",
    "Notice",
    "NoticeKind",
    "NoticeSink",
    "LoggingNoticeSink",
    # Time
    "Clock",
    "SystemClock",
    # Cache
    "RequestCache",
    "CacheEntry",
    "CacheStats",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Retry
    "RetryPolicy",
    "retry_with_backoff",
    # Scheduler
    "RequestScheduler",
]
