from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from recommender.common.clock import SYSTEM_CLOCK, Clock
from recommender.common.logging import get_logger


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerPolicy:
    failure_threshold: int
    cooldown_seconds: float


class CircuitBreaker:
    """Three-state breaker guarding one degraded dependency.

    closed -> open after ``failure_threshold`` consecutive failures.
    open -> half_open once ``cooldown_seconds`` have passed since the last
    failure; the caller that observes the transition owns the single trial call.
    half_open -> closed on success, back to open on failure.

    ``record_neutral`` ends a call that says nothing about the dependency's
    health (client errors, throttling, cancellation) and frees the trial slot.
    """

    def __init__(
        self,
        name: str,
        policy: CircuitBreakerPolicy,
        *,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.name = name
        self._policy = policy
        self._clock = clock or SYSTEM_CLOCK
        self._logger = logger or get_logger()
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    def can_execute(self) -> bool:
        with self._lock:
            if self._state is CircuitState.CLOSED:
                return True
            if self._state is CircuitState.OPEN:
                if self._cooldown_elapsed():
                    self._transition(CircuitState.HALF_OPEN)
                    self._trial_in_flight = True
                    return True
                return False
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            self._trial_in_flight = False
            self._failure_count = 0
            if self._state is not CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self._trial_in_flight = False
            self._failure_count += 1
            self._last_failure = self._clock.monotonic()
            if self._state is CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif (
                self._state is CircuitState.CLOSED
                and self._failure_count >= self._policy.failure_threshold
            ):
                self._transition(CircuitState.OPEN)

    def record_neutral(self) -> None:
        with self._lock:
            self._trial_in_flight = False

    def retry_after(self) -> float:
        with self._lock:
            if self._state is not CircuitState.OPEN or self._last_failure is None:
                return 0.0
            elapsed = self._clock.monotonic() - self._last_failure
            return max(self._policy.cooldown_seconds - elapsed, 0.0)

    def reset(self) -> None:
        with self._lock:
            self._failure_count = 0
            self._last_failure = None
            self._trial_in_flight = False
            if self._state is not CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "failure_threshold": self._policy.failure_threshold,
                "cooldown_seconds": self._policy.cooldown_seconds,
            }

    # Callers below hold self._lock.

    def _cooldown_elapsed(self) -> bool:
        if self._last_failure is None:
            return True
        return self._clock.monotonic() - self._last_failure > self._policy.cooldown_seconds

    def _transition(self, new_state: CircuitState) -> None:
        previous = self._state
        self._state = new_state
        extra = {
            "breaker": self.name,
            "from_state": previous.value,
            "failure_count": self._failure_count,
        }
        if new_state is CircuitState.OPEN:
            self._logger.warning("circuit_opened", extra=extra)
        elif new_state is CircuitState.HALF_OPEN:
            self._logger.info("circuit_half_open", extra=extra)
        else:
            self._logger.info("circuit_closed", extra=extra)
