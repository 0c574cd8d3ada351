from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from recommender.common.clock import (
    SYSTEM_CLOCK,
    CancelToken,
    Clock,
    OperationCancelledError,
)
from recommender.common.logging import get_logger

T = TypeVar("T")

RetryablePredicate = Callable[[BaseException], bool]
DelayHint = Callable[[BaseException], Optional[float]]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    base_delay_ms: int
    max_delay_ms: int

    def delay_seconds(self, attempt: int) -> float:
        """Backoff after the 0-based ``attempt`` failed: base * 2**attempt, capped."""
        if attempt < 0:
            attempt = 0
        delay_ms = min(self.base_delay_ms * (2 ** attempt), self.max_delay_ms)
        return max(delay_ms, 0) / 1000.0


class RetryExecutor:
    """Runs one logical operation with bounded retries and exponential backoff.

    The executor knows nothing about breakers or limiters; callers decide what
    is retryable through ``is_retryable`` and may pass a server-supplied delay
    through ``delay_hint``. When attempts run out the last exception is
    re-raised as is.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._policy = policy
        self._clock = clock or SYSTEM_CLOCK
        self._logger = logger or get_logger()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def execute(
        self,
        operation: Callable[[], T],
        *,
        cancel: Optional[CancelToken] = None,
        is_retryable: Optional[RetryablePredicate] = None,
        delay_hint: Optional[DelayHint] = None,
    ) -> T:
        max_attempts = max(1, self._policy.max_attempts)
        attempt = 0
        while True:
            try:
                return operation()
            except OperationCancelledError:
                raise
            except Exception as exc:
                if is_retryable is not None and not is_retryable(exc):
                    raise
                if attempt + 1 >= max_attempts:
                    self._logger.warning(
                        "retry_exhausted",
                        extra={"attempts": attempt + 1, "error": str(exc)},
                    )
                    raise
                delay = self._next_delay(attempt, exc, delay_hint)
                self._logger.warning(
                    "retry_scheduled",
                    extra={
                        "attempt": attempt + 1,
                        "delay_seconds": delay,
                        "error": str(exc),
                    },
                )
                self._clock.sleep(delay, cancel)
                attempt += 1

    def _next_delay(
        self, attempt: int, exc: BaseException, delay_hint: Optional[DelayHint]
    ) -> float:
        delay = self._policy.delay_seconds(attempt)
        if delay_hint is None:
            return delay
        hint = delay_hint(exc)
        if hint is None:
            return delay
        cap = self._policy.max_delay_ms / 1000.0
        return max(delay, min(max(hint, 0.0), cap))
