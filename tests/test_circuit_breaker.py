"""
Tests for circuit breakers.
"""

from datetime import timedelta

from seatsync.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)


def make_breaker(clock, threshold=5, cooldown=30):
    config = CircuitBreakerConfig(
        failure_threshold=threshold, reset_timeout=timedelta(seconds=cooldown)
    )
    return CircuitBreaker("primary", config, clock=clock)


def test_opens_after_threshold_consecutive_failures(clock):
    cb = make_breaker(clock)
    for _ in range(4):
        cb.record_failure()
    assert not cb.is_open()

    cb.record_failure()
    assert cb.is_open()
    assert cb.state == CircuitState.OPEN
    assert cb.allow_request() is False


def test_success_resets_the_failure_count(clock):
    cb = make_breaker(clock)
    for _ in range(4):
        cb.record_failure()
    cb.record_success()
    cb.record_failure()
    assert cb.failure_count == 1
    assert not cb.is_open()


def test_exactly_one_trial_after_cooldown(clock):
    cb = make_breaker(clock)
    for _ in range(5):
        cb.record_failure()

    clock.advance(29)
    assert cb.allow_request() is False

    clock.advance(1)
    assert cb.state == CircuitState.HALF_OPEN
    assert cb.allow_request() is True
    assert cb.allow_request() is False


def test_success_in_half_open_closes(clock):
    cb = make_breaker(clock)
    for _ in range(5):
        cb.record_failure()
    clock.advance(30)
    assert cb.allow_request()

    cb.record_success()
    assert cb.state == CircuitState.CLOSED
    assert cb.failure_count == 0


def test_failure_in_half_open_reopens(clock):
    cb = make_breaker(clock)
    for _ in range(5):
        cb.record_failure()
    clock.advance(30)
    assert cb.allow_request()

    cb.record_failure()
    assert cb.state == CircuitState.OPEN
    assert cb.get_time_until_reset() == 30


def test_registry_reports_open_circuits(clock):
    registry = CircuitBreakerRegistry(
        CircuitBreakerConfig(failure_threshold=1), clock=clock
    )
    registry.get("primary").record_failure()
    registry.get("secondary").record_success()

    assert registry.get_open_circuits() == ["primary"]
    assert registry.get_all_status()["primary"]["state"] == "OPEN"

    assert registry.reset("primary") is True
    assert registry.reset("unknown") is False
    assert registry.get_open_circuits() == []


def test_released_trial_can_be_taken_again(clock):
    cb = make_breaker(clock)
    for _ in range(5):
        cb.record_failure()
    clock.advance(30)

    assert cb.allow_request() is True
    cb.release_trial()

    assert cb.state == CircuitState.HALF_OPEN
    assert cb.allow_request() is True
    assert cb.allow_request() is False


def test_release_outside_half_open_changes_nothing(clock):
    cb = make_breaker(clock)
    cb.release_trial()
    assert cb.state == CircuitState.CLOSED
    assert cb.allow_request() is True
