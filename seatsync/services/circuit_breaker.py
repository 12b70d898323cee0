"""
CircuitBreaker - stops calling a backend that keeps failing.

A backend starts CLOSED. After `failure_threshold` consecutive failures it
goes OPEN and every call is refused. Once `reset_timeout` has passed the
breaker is HALF_OPEN and admits exactly one trial call: a success closes
it, a failure opens it again for another full cooldown.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from loguru import logger

from seatsync.services.clock import Clock, SystemClock


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout: timedelta = timedelta(seconds=30)


class CircuitBreaker:
    """
    Breaker for one backend.

    Usage:
        breaker = CircuitBreaker("primary")

        if not breaker.allow_request():
            raise CircuitOpenError("primary", breaker.get_time_until_reset() or 0)

        try:
            result = await primary.invoke(...)
        except TransportError:
            breaker.record_failure()
            raise
        breaker.record_success()
    """

    def __init__(
        self,
        backend: str,
        config: CircuitBreakerConfig | None = None,
        clock: Clock | None = None,
    ):
        self.backend = backend
        self.config = config or CircuitBreakerConfig()
        self._clock = clock or SystemClock()

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_at: float | None = None
        self._opened_at: float | None = None
        self._trial_taken = False

    @property
    def state(self) -> CircuitState:
        """Current state; an expired cooldown moves OPEN to HALF_OPEN."""
        if self._state == CircuitState.OPEN and self._cooldown_remaining() == 0:
            self._state = CircuitState.HALF_OPEN
            self._trial_taken = False
            logger.info(f"Circuit breaker '{self.backend}' is HALF_OPEN, awaiting a trial call")
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    def _cooldown_remaining(self) -> float:
        if self._opened_at is None:
            return 0.0
        reopen_at = self._opened_at + self.config.reset_timeout.total_seconds()
        return max(0.0, reopen_at - self._clock.now())

    def is_open(self) -> bool:
        """True while a call would be refused."""
        state = self.state
        if state == CircuitState.HALF_OPEN:
            return self._trial_taken
        return state == CircuitState.OPEN

    def allow_request(self) -> bool:
        """Admit a call. In HALF_OPEN the single trial is used up here."""
        if self.is_open():
            return False
        if self._state == CircuitState.HALF_OPEN:
            self._trial_taken = True
            logger.info(f"Circuit breaker '{self.backend}' admitted its trial call")
        return True

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info(f"Circuit breaker '{self.backend}' CLOSED, backend recovered")
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = None
        self._trial_taken = False

    def release_trial(self) -> None:
        """Give back a trial call that ended without a verdict on the backend."""
        if self._state == CircuitState.HALF_OPEN and self._trial_taken:
            self._trial_taken = False
            logger.debug(f"Circuit breaker '{self.backend}' trial released unanswered")

    def record_failure(self) -> None:
        self._failures += 1
        self._last_failure_at = self._clock.timestamp()

        state = self.state
        if state == CircuitState.HALF_OPEN or (
            state == CircuitState.CLOSED
            and self._failures >= self.config.failure_threshold
        ):
            self._trip()

    def _trip(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock.now()
        self._trial_taken = False
        logger.warning(
            f"Circuit breaker '{self.backend}' OPEN after {self._failures} "
            f"consecutive failures, cooling down "
            f"{self.config.reset_timeout.total_seconds():.0f}s"
        )

    def reset(self) -> None:
        self.record_success()
        self._last_failure_at = None
        logger.info(f"Circuit breaker '{self.backend}' reset by hand")

    def get_time_until_reset(self) -> float | None:
        """Seconds left in the cooldown, None unless OPEN."""
        if self._state != CircuitState.OPEN:
            return None
        return self._cooldown_remaining()

    def get_status(self) -> dict[str, Any]:
        last_failure = None
        if self._last_failure_at is not None:
            last_failure = datetime.fromtimestamp(self._last_failure_at).isoformat()
        return {
            "backend": self.backend,
            "state": self.state.value,
            "failure_count": self._failures,
            "threshold": self.config.failure_threshold,
            "cooldown": self.config.reset_timeout.total_seconds(),
            "last_failure": last_failure,
            "time_until_reset": self.get_time_until_reset(),
        }


class CircuitBreakerRegistry:
    """
    Lazily created breakers, one per backend name.

    Usage:
        breakers = CircuitBreakerRegistry(clock=clock)
        breakers.get("primary").record_failure()
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock: Clock | None = None,
    ):
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock or SystemClock()
        self._by_backend: dict[str, CircuitBreaker] = {}

    def get(self, backend: str) -> CircuitBreaker:
        breaker = self._by_backend.get(backend)
        if breaker is None:
            breaker = CircuitBreaker(backend, self._default_config, clock=self._clock)
            self._by_backend[backend] = breaker
        return breaker

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        return {name: breaker.get_status() for name, breaker in self._by_backend.items()}

    def reset(self, backend: str) -> bool:
        """Reset one breaker; False if the backend was never seen."""
        breaker = self._by_backend.get(backend)
        if breaker is None:
            return False
        breaker.reset()
        return True

    def get_open_circuits(self) -> list[str]:
        return [
            name
            for name, breaker in self._by_backend.items()
            if breaker.state == CircuitState.OPEN
        ]
