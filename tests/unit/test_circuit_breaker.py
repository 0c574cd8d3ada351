import threading

from recommender.common.clock import SystemClock
from recommender.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerPolicy,
    CircuitState,
)


def _breaker(clock, failure_threshold: int = 2, cooldown_seconds: float = 5.0) -> CircuitBreaker:
    return CircuitBreaker(
        "catalog",
        CircuitBreakerPolicy(
            failure_threshold=failure_threshold, cooldown_seconds=cooldown_seconds
        ),
        clock=clock,
    )


def test_starts_closed(clock) -> None:
    breaker = _breaker(clock)
    assert breaker.state is CircuitState.CLOSED
    assert breaker.can_execute()
    assert breaker.failure_count == 0


def test_success_while_closed_resets_failure_count(clock) -> None:
    breaker = _breaker(clock, failure_threshold=3)
    breaker.record_failure()
    breaker.record_failure()
    assert breaker.failure_count == 2

    breaker.record_success()

    assert breaker.failure_count == 0
    breaker.record_failure()
    breaker.record_failure()
    assert breaker.state is CircuitState.CLOSED


def test_opens_after_threshold_and_retries_after_cooldown(clock) -> None:
    breaker = _breaker(clock, failure_threshold=2, cooldown_seconds=5.0)
    breaker.record_failure()
    breaker.record_failure()
    assert breaker.state is CircuitState.OPEN

    clock.advance(1)
    assert not breaker.can_execute()

    clock.advance(5)
    assert breaker.can_execute()
    assert breaker.state is CircuitState.HALF_OPEN


def test_stays_open_until_cooldown_strictly_exceeded(clock) -> None:
    breaker = _breaker(clock, failure_threshold=1, cooldown_seconds=5.0)
    breaker.record_failure()

    clock.advance(5)
    assert not breaker.can_execute()

    clock.advance(0.5)
    assert breaker.can_execute()


def test_half_open_admits_single_trial(clock) -> None:
    breaker = _breaker(clock, failure_threshold=1)
    breaker.record_failure()
    clock.advance(6)

    assert breaker.can_execute()
    assert not breaker.can_execute()
    assert not breaker.can_execute()


def test_half_open_success_closes_and_resets(clock) -> None:
    breaker = _breaker(clock)
    breaker.record_failure()
    breaker.record_failure()
    clock.advance(6)
    assert breaker.can_execute()

    breaker.record_success()

    assert breaker.state is CircuitState.CLOSED
    assert breaker.failure_count == 0
    assert breaker.can_execute()
    assert breaker.can_execute()


def test_half_open_failure_reopens_and_restarts_cooldown(clock) -> None:
    breaker = _breaker(clock)
    breaker.record_failure()
    breaker.record_failure()
    clock.advance(6)
    assert breaker.can_execute()

    breaker.record_failure()

    assert breaker.state is CircuitState.OPEN
    clock.advance(4)
    assert not breaker.can_execute()
    clock.advance(1.5)
    assert breaker.can_execute()
    assert breaker.state is CircuitState.HALF_OPEN


def test_neutral_outcome_frees_trial_slot(clock) -> None:
    breaker = _breaker(clock, failure_threshold=1)
    breaker.record_failure()
    clock.advance(6)
    assert breaker.can_execute()
    assert not breaker.can_execute()

    breaker.record_neutral()

    assert breaker.state is CircuitState.HALF_OPEN
    assert breaker.can_execute()


def test_retry_after_reports_remaining_cooldown(clock) -> None:
    breaker = _breaker(clock, failure_threshold=1, cooldown_seconds=5.0)
    assert breaker.retry_after() == 0.0
    breaker.record_failure()
    clock.advance(2)
    assert breaker.retry_after() == 3.0


def test_reset_and_snapshot(clock) -> None:
    breaker = _breaker(clock, failure_threshold=1)
    breaker.record_failure()
    assert breaker.snapshot()["state"] == "open"

    breaker.reset()

    snapshot = breaker.snapshot()
    assert snapshot["state"] == "closed"
    assert snapshot["failure_count"] == 0
    assert snapshot["failure_threshold"] == 1


def test_concurrent_failures_open_exactly_once() -> None:
    breaker = CircuitBreaker(
        "catalog",
        CircuitBreakerPolicy(failure_threshold=10, cooldown_seconds=60.0),
        clock=SystemClock(),
    )
    barrier = threading.Barrier(10)

    def worker() -> None:
        barrier.wait()
        breaker.record_failure()

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert breaker.failure_count == 10
    assert breaker.state is CircuitState.OPEN
    assert not breaker.can_execute()
