"""
FallbackOrchestrator - runs an operation on the primary backend and routes
it to the secondary backend when the primary is unreachable.

Triggers for fallback:
- the primary circuit breaker is open
- the primary failed with a network / timeout / fetch / CORS class error
  (typed, or inferred from a legacy message)
- the primary raised an exception in those categories after retries

The secondary is tried exactly once per call and has its own failure
budget, so a dead secondary is skipped instead of hammered.
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterable

from loguru import logger

from seatsync.operations.registry import OperationSpec
from seatsync.services.circuit_breaker import CircuitBreakerRegistry
from seatsync.services.clock import Clock, SystemClock
from seatsync.services.errors import (
    FALLBACK_ERROR_TYPES,
    RETRYABLE_ERROR_TYPES,
    CircuitOpenError,
    ErrorType,
    TransportError,
    classify_exception,
    is_critical,
    is_service_exception,
)
from seatsync.services.notices import (
    LoggingNoticeSink,
    Notice,
    NoticeKind,
    NoticeLevel,
    NoticeSink,
    notice_for_result,
)
from seatsync.services.results import ApiResult
from seatsync.services.retry import RetryPolicy, is_retryable, retry_with_backoff
from seatsync.transport.base import Transport

Invalidator = Callable[[Iterable[str]], Any]


@dataclass
class SecondaryBudget:
    """Failure budget of the secondary backend."""

    max_failures: int = 3
    recovery_window: float = 300.0
    failure_count: int = 0
    last_failure_time: float | None = None

    def is_exhausted(self, now: float) -> bool:
        """True while max_failures were hit within the recovery window."""
        if self.last_failure_time is None:
            return False
        if now - self.last_failure_time > self.recovery_window:
            self.failure_count = 0
            return False
        return self.failure_count >= self.max_failures

    def record_failure(self, now: float) -> None:
        self.failure_count += 1
        self.last_failure_time = now

    def record_success(self) -> None:
        self.failure_count = 0
        self.last_failure_time = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "failure_count": self.failure_count,
            "max_failures": self.max_failures,
            "recovery_window": self.recovery_window,
            "last_failure_time": self.last_failure_time,
        }


class FallbackStats:
    """Counters for primary/secondary routing."""

    def __init__(self):
        self.total_requests = 0
        self.primary_failures = 0
        self.fallback_count = 0
        self.secondary_successes = 0
        self.secondary_skipped = 0
        self.mode = "primary"  # 'primary' | 'secondary'

    def to_dict(self) -> dict[str, Any]:
        fallback_rate = (
            self.fallback_count / self.total_requests if self.total_requests else 0.0
        )
        secondary_rate = (
            self.secondary_successes / self.fallback_count
            if self.fallback_count
            else 0.0
        )
        return {
            "mode": self.mode,
            "total_requests": self.total_requests,
            "primary_failures": self.primary_failures,
            "fallback_count": self.fallback_count,
            "secondary_successes": self.secondary_successes,
            "secondary_skipped": self.secondary_skipped,
            "fallback_rate": f"{fallback_rate:.2%}",
            "secondary_success_rate": f"{secondary_rate:.2%}",
        }


class _FailedResult(TransportError):
    """A primary result that failed in a retryable way."""

    def __init__(self, result: ApiResult, backend: str, error_type: ErrorType):
        self.result = result
        super().__init__(
            result.error or error_type.value, backend=backend, error_type=error_type
        )


class FallbackOrchestrator:
    """
    Primary-first execution with retry, circuit breaking and fallback.

    Usage:
        orchestrator = FallbackOrchestrator(primary, secondary)
        result = await orchestrator.execute(spec, params)
    """

    def __init__(
        self,
        primary: Transport,
        secondary: Transport | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        retry_policy: RetryPolicy | None = None,
        budget: SecondaryBudget | None = None,
        notices: NoticeSink | None = None,
        invalidate: Invalidator | None = None,
        clock: Clock | None = None,
        primary_timeout: float = 20.0,
        secondary_timeout: float = 20.0,
    ):
        self._clock = clock or SystemClock()
        self.primary = primary
        self.secondary = secondary
        self.breakers = breakers or CircuitBreakerRegistry(clock=self._clock)
        self.retry_policy = retry_policy or RetryPolicy()
        self.budget = budget or SecondaryBudget()
        self._notices = notices or LoggingNoticeSink()
        self._invalidate = invalidate
        self._primary_timeout = primary_timeout
        self._secondary_timeout = secondary_timeout
        self._stats = FallbackStats()

    async def execute(self, spec: OperationSpec, params: list[Any]) -> ApiResult:
        """Run an operation and resolve to an ApiResult."""
        self._stats.total_requests += 1
        result = await self._execute(spec, params)

        if result.success and spec.mutating and spec.invalidates and self._invalidate:
            self._invalidate(spec.invalidates)

        return result

    async def _execute(self, spec: OperationSpec, params: list[Any]) -> ApiResult:
        breaker = self.breakers.get(self.primary.name)

        if not breaker.allow_request():
            error = CircuitOpenError(self.primary.name, breaker.get_time_until_reset() or 0)
            logger.warning(f"{error}; routing '{spec.name}' to secondary")
            return await self._fallback_or_fail(
                spec, params, ApiResult.fail(str(error), ErrorType.CIRCUIT_OPEN)
            )

        admitted = True

        async def attempt() -> ApiResult:
            # The first attempt was admitted above; retries ask the breaker again
            nonlocal admitted
            if not admitted and not breaker.allow_request():
                raise CircuitOpenError(
                    self.primary.name, breaker.get_time_until_reset() or 0
                )
            admitted = False
            return await self._call_primary(spec, params)

        try:
            result = await retry_with_backoff(
                attempt,
                should_retry=is_retryable,
                policy=self.retry_policy,
                clock=self._clock,
                label=f"{self.primary.name}.{spec.name}",
            )
        except _FailedResult as e:
            self._stats.primary_failures += 1
            if e.error_type in FALLBACK_ERROR_TYPES:
                return await self._fallback_or_fail(spec, params, e.result)
            self._report(e.result)
            return e.result
        except Exception as e:
            if not is_service_exception(e):
                raise
            self._stats.primary_failures += 1
            error_type = classify_exception(e)
            logger.error(f"Primary exception ({spec.name}): {e}")
            failure = ApiResult.fail(str(e), error_type, source=self.primary.name)
            if is_critical(e):
                return await self._fallback_or_fail(spec, params, failure)
            self._report(failure)
            return failure

        if not result.success and result.resolved_error_type in FALLBACK_ERROR_TYPES:
            self._stats.primary_failures += 1
            return await self._fallback_or_fail(spec, params, result)

        if self._stats.mode != "primary":
            self._stats.mode = "primary"
            logger.info("Primary backend answering again, fallback deactivated")

        if not result.success:
            self._report(result)
        return result

    async def _call_primary(self, spec: OperationSpec, params: list[Any]) -> ApiResult:
        """One attempt against the primary, feeding its circuit breaker."""
        breaker = self.breakers.get(self.primary.name)
        timeout = spec.timeout or self._primary_timeout
        try:
            result = await self.primary.invoke(spec.name, params, timeout)
        except Exception as e:
            if not is_service_exception(e):
                breaker.release_trial()
            elif classify_exception(e) in RETRYABLE_ERROR_TYPES:
                breaker.record_failure()
            else:
                # The backend answered; a rejected request says nothing about its health
                breaker.record_success()
            raise
        except BaseException:
            # Cancelled mid-call
            breaker.release_trial()
            raise

        error_type = result.resolved_error_type
        if not result.success and error_type in RETRYABLE_ERROR_TYPES:
            breaker.record_failure()
            raise _FailedResult(result, self.primary.name, error_type)

        breaker.record_success()
        if result.source is None:
            result.source = self.primary.name
        return result

    async def _fallback_or_fail(
        self, spec: OperationSpec, params: list[Any], failure: ApiResult
    ) -> ApiResult:
        """Try the secondary once; otherwise resolve to the primary's failure."""
        fallback = await self._try_secondary(spec, params, reason=failure.error or "")
        if fallback is not None:
            if not fallback.success:
                self._report(fallback, exhausted=True)
            return fallback

        self._report(failure, exhausted=True)
        return failure

    async def _try_secondary(
        self, spec: OperationSpec, params: list[Any], reason: str
    ) -> ApiResult | None:
        if self.secondary is None or not spec.allow_fallback:
            return None

        now = self._clock.now()
        if self.budget.is_exhausted(now):
            self._stats.secondary_skipped += 1
            logger.warning(
                f"Secondary skipped for '{spec.name}': "
                f"{self.budget.failure_count}/{self.budget.max_failures} recent failures"
            )
            return None

        self._stats.fallback_count += 1
        self._stats.mode = "secondary"
        logger.warning(f"Fallback activated for '{spec.name}': {reason}")

        operation = spec.secondary_operation
        timeout = spec.timeout or self._secondary_timeout
        try:
            result = await self.secondary.invoke(operation, params, timeout)
        except Exception as e:
            if not is_service_exception(e):
                raise
            self.budget.record_failure(self._clock.now())
            logger.error(f"Secondary fallback failed for '{spec.name}': {e}")
            return None

        if result.source is None:
            result.source = self.secondary.name

        if result.success:
            self.budget.record_success()
            self._stats.secondary_successes += 1
            result.fallback = True
            self._notices.notify(
                Notice(
                    kind=NoticeKind.FALLBACK_SUCCEEDED,
                    level=NoticeLevel.INFO,
                    title="Fallback succeeded",
                    message=f"'{spec.name}' completed via the secondary service",
                    duration=3.0,
                    context={"operation": spec.name},
                )
            )
            return result

        if result.resolved_error_type in FALLBACK_ERROR_TYPES:
            self.budget.record_failure(self._clock.now())
            logger.error(
                f"Secondary fallback failed for '{spec.name}': {result.error} "
                f"({self.budget.failure_count}/{self.budget.max_failures})"
            )
            return None

        # The secondary answered; its business failure is the answer
        self.budget.record_success()
        result.fallback = True
        return result

    def _report(self, result: ApiResult, exhausted: bool = False) -> None:
        notice = notice_for_result(result, exhausted=exhausted)
        if notice is not None:
            self._notices.notify(notice)

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats.to_dict(),
            "secondary_budget": self.budget.to_dict(),
        }
