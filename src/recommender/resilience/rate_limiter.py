from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from recommender.common.clock import SYSTEM_CLOCK, CancelToken, Clock
from recommender.common.logging import get_logger

DEFAULT_POLL_INTERVAL = 0.1


@dataclass(frozen=True)
class RateLimitPolicy:
    max_requests: int
    per_seconds: float

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0 and self.per_seconds > 0


class RateLimiter:
    """Strict sliding-window limiter: at most ``max_requests`` admissions in
    any trailing ``per_seconds`` interval. There is no burst refill."""

    def __init__(
        self,
        policy: RateLimitPolicy,
        *,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._policy = policy
        self._clock = clock or SYSTEM_CLOCK
        self._logger = logger or get_logger()
        self._poll_interval = poll_interval
        self._requests: Deque[float] = deque()
        self._lock = threading.Lock()

    @property
    def policy(self) -> RateLimitPolicy:
        return self._policy

    def allow(self) -> bool:
        if not self._policy.enabled:
            return True
        with self._lock:
            now = self._clock.monotonic()
            while self._requests and now - self._requests[0] >= self._policy.per_seconds:
                self._requests.popleft()
            if len(self._requests) >= self._policy.max_requests:
                return False
            self._requests.append(now)
            return True

    def wait(self, cancel: Optional[CancelToken] = None) -> None:
        if cancel is not None:
            cancel.raise_if_cancelled()
        logged = False
        while not self.allow():
            if not logged:
                self._logger.info(
                    "rate_limit_wait",
                    extra={
                        "max_requests": self._policy.max_requests,
                        "per_seconds": self._policy.per_seconds,
                    },
                )
                logged = True
            self._clock.sleep(self._poll_interval, cancel)

    def in_window(self) -> int:
        with self._lock:
            now = self._clock.monotonic()
            return sum(1 for ts in self._requests if now - ts < self._policy.per_seconds)
