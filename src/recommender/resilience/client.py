from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, Optional, TypeVar

import requests

from recommender.common.clock import CancelToken, OperationCancelledError
from recommender.common.logging import get_logger
from recommender.resilience.circuit_breaker import CircuitBreaker
from recommender.resilience.errors import (
    ApiError,
    CircuitOpenError,
    MalformedResponseError,
    NetworkError,
)
from recommender.resilience.rate_limiter import RateLimiter
from recommender.resilience.retry import RetryExecutor

T = TypeVar("T")

_USER_AGENT = "recommender/1.0"
_MAX_ERROR_BODY = 512


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, NetworkError):
        return True
    if isinstance(exc, ApiError):
        return exc.transient
    return False


def retry_after_of(exc: BaseException) -> Optional[float]:
    if isinstance(exc, ApiError):
        return exc.retry_after
    return None


def counts_as_breaker_failure(exc: BaseException) -> bool:
    if isinstance(exc, (NetworkError, MalformedResponseError)):
        return True
    return isinstance(exc, ApiError) and exc.server_error


def parse_retry_after(value: Optional[str], *, now: Optional[datetime] = None) -> Optional[float]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max((when - now).total_seconds(), 0.0)


class ResilientClient:
    """Composes limiter, breaker and retry around single-request operations.

    The breaker is consulted once per logical call; retries inside that call
    go straight back to the limiter and the request. Every physical request
    is admitted by the limiter.
    """

    def __init__(
        self,
        name: str,
        *,
        limiter: RateLimiter,
        breaker: CircuitBreaker,
        retry: RetryExecutor,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.name = name
        self._limiter = limiter
        self._breaker = breaker
        self._retry = retry
        self._logger = logger or get_logger()

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    def call(self, operation: Callable[[], T], *, cancel: Optional[CancelToken] = None) -> T:
        if not self._breaker.can_execute():
            retry_after = self._breaker.retry_after()
            self._logger.info(
                "circuit_rejected",
                extra={"client": self.name, "retry_after_seconds": retry_after},
            )
            raise CircuitOpenError(self.name, retry_after)
        return self._retry.execute(
            lambda: self._attempt(operation, cancel),
            cancel=cancel,
            is_retryable=is_transient,
            delay_hint=retry_after_of,
        )

    def _attempt(self, operation: Callable[[], T], cancel: Optional[CancelToken]) -> T:
        try:
            self._limiter.wait(cancel)
        except OperationCancelledError:
            self._breaker.record_neutral()
            raise
        try:
            result = operation()
        except Exception as exc:
            if counts_as_breaker_failure(exc):
                self._breaker.record_failure()
            else:
                self._breaker.record_neutral()
            raise
        self._breaker.record_success()
        return result


class HttpJsonClient:
    """Single-request JSON GETs; every failure is mapped onto the resilience
    error taxonomy so callers can classify it."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 30.0,
        session: Optional[requests.Session] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self._headers = {"User-Agent": _USER_AGENT, "Accept": "application/json"}
        if headers:
            self._headers.update(headers)

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            resp = self._session.get(
                url, params=params, headers=self._headers, timeout=self._timeout
            )
        except requests.Timeout as exc:
            raise NetworkError(f"Request timeout for GET {url}") from exc
        except requests.RequestException as exc:
            raise NetworkError(f"Request failed for GET {url}: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            raise ApiError(
                status_code=resp.status_code,
                message=(resp.text or "")[:_MAX_ERROR_BODY],
                url=url,
                method="GET",
                retry_after=parse_retry_after(resp.headers.get("Retry-After")),
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise MalformedResponseError(f"Undecodable response body from GET {url}") from exc
        if not isinstance(payload, dict):
            raise MalformedResponseError(f"Unexpected response shape from GET {url}")
        return payload

    def close(self) -> None:
        self._session.close()
