import logging
import threading

import pytest

from recommender.catalog.tmdb import CatalogClient, CatalogConfig
from recommender.common.clock import CancelToken, OperationCancelledError, SystemClock
from recommender.jobs.enrich import (
    STATUS_FAILED,
    STATUS_MATCHED,
    STATUS_SKIPPED,
    EnrichmentJob,
    MediaItem,
)
from recommender.jobs.runner import JobOutcome, JobRunner
from recommender.locking.file_lock import FileLock
from recommender.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerPolicy,
    CircuitState,
)
from recommender.resilience.errors import ApiError
from recommender.resilience.rate_limiter import RateLimiter, RateLimitPolicy
from recommender.storage.cache import ExpiringCache


class ScriptedHttp:
    """Returns a movie hit for every query after failing the first ``outages`` requests."""

    def __init__(self, outages: int) -> None:
        self.outages = outages
        self.calls = 0
        self._lock = threading.Lock()

    def get_json(self, path, params=None):
        with self._lock:
            self.calls += 1
            call = self.calls
        if call <= self.outages:
            raise ApiError(503, "maintenance", url=path)
        return {"results": [{"id": call, "title": params["query"], "poster_path": "/p.jpg"}]}

    def close(self) -> None:
        pass


def _catalog(monkeypatch, clock, http, *, failure_threshold: int, max_attempts: int):
    monkeypatch.setenv("TMDB_API_KEY", "test-key")
    config = CatalogConfig.from_settings(
        {
            "catalog": {
                "rate_limit": {"max_requests": 100, "per_seconds": 1},
                "circuit_breaker": {
                    "failure_threshold": failure_threshold,
                    "cooldown_seconds": 5,
                },
                "retry": {"max_attempts": max_attempts, "base_delay_ms": 100},
            }
        }
    )
    return CatalogClient(
        config,
        http=http,
        cache=ExpiringCache(60, clock=clock),
        clock=clock,
        logger=logging.getLogger("tests.scenarios"),
    )


def test_rate_limit_two_per_second(clock) -> None:
    limiter = RateLimiter(RateLimitPolicy(max_requests=2, per_seconds=1.0), clock=clock)

    assert [limiter.allow() for _ in range(3)] == [True, True, False]
    clock.advance(1.0)
    assert limiter.allow()


def test_breaker_two_failures_five_second_cooldown(clock) -> None:
    breaker = CircuitBreaker(
        "catalog", CircuitBreakerPolicy(failure_threshold=2, cooldown_seconds=5.0), clock=clock
    )
    breaker.record_failure()
    breaker.record_failure()

    clock.advance(1)
    assert not breaker.can_execute()
    clock.advance(5)
    assert breaker.can_execute()
    assert breaker.state is CircuitState.HALF_OPEN


def test_batch_degrades_when_breaker_opens(monkeypatch, clock) -> None:
    http = ScriptedHttp(outages=2)
    catalog = _catalog(monkeypatch, clock, http, failure_threshold=2, max_attempts=1)
    items = [MediaItem(title, 0, "movie") for title in ("Heat", "Ronin", "Alien", "Se7en")]

    report = EnrichmentJob(catalog, workers=1).run(items)

    assert [entry.status for entry in report.items] == [
        STATUS_FAILED,
        STATUS_FAILED,
        STATUS_SKIPPED,
        STATUS_SKIPPED,
    ]
    assert http.calls == 2
    assert report.degraded

    clock.advance(6)
    recovered = EnrichmentJob(catalog, workers=1).run(items[2:])

    assert [entry.status for entry in recovered.items] == [STATUS_MATCHED, STATUS_MATCHED]
    assert catalog.breaker_state is CircuitState.CLOSED


def test_retries_ride_out_short_outage(monkeypatch, clock) -> None:
    http = ScriptedHttp(outages=2)
    catalog = _catalog(monkeypatch, clock, http, failure_threshold=5, max_attempts=3)

    report = EnrichmentJob(catalog, workers=1).run([MediaItem("Heat", 1995, "movie")])

    assert report.items[0].status == STATUS_MATCHED
    assert report.items[0].catalog_id == 3
    assert clock.sleeps == [0.1, 0.2]


def test_scheduled_job_is_exclusive_across_runners(monkeypatch, lock_dir, clock) -> None:
    http = ScriptedHttp(outages=0)
    catalog = _catalog(monkeypatch, clock, http, failure_threshold=5, max_attempts=1)
    job = EnrichmentJob(catalog, workers=2)
    first = JobRunner(FileLock(lock_dir, clock=clock), timeout_seconds=0.5)
    second = JobRunner(FileLock(lock_dir, clock=clock), timeout_seconds=0.5)
    items = [MediaItem("Heat", 1995, "movie")]
    inner = []

    def work():
        inner.append(second.run("enrich", lambda: job.run(items)))
        return job.run(items)

    result = first.run("enrich", work)

    assert result.outcome is JobOutcome.COMPLETED
    assert result.value.summary()["matched"] == 1
    assert inner[0].outcome is JobOutcome.ALREADY_RUNNING
    assert http.calls == 1


def test_job_deadline_aborts_lock_wait(lock_dir) -> None:
    clock = SystemClock()
    holder = FileLock(lock_dir, clock=clock)
    assert holder.try_acquire("enrich", timeout=30)
    runner = JobRunner(FileLock(lock_dir, clock=clock, poll_interval=0.01), timeout_seconds=30)

    with pytest.raises(OperationCancelledError):
        runner.run("enrich", lambda: None, CancelToken.with_timeout(0.1))

    holder.release("enrich")
