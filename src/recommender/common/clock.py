from __future__ import annotations

import threading
import time
from typing import Optional, Protocol


class OperationCancelledError(RuntimeError):
    pass


class Clock(Protocol):
    def monotonic(self) -> float: ...

    def time(self) -> float: ...

    def sleep(self, seconds: float, cancel: Optional["CancelToken"] = None) -> None: ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    def time(self) -> float:
        return time.time()

    def sleep(self, seconds: float, cancel: Optional["CancelToken"] = None) -> None:
        if cancel is None:
            if seconds > 0:
                time.sleep(seconds)
            return
        if cancel.wait(max(seconds, 0.0)):
            raise OperationCancelledError(cancel.reason)


SYSTEM_CLOCK = SystemClock()


class CancelToken:
    """Cancellation signal shared between a caller and its blocking waits.

    A token fires when ``cancel()`` is called or, when built with a deadline,
    once the clock reaches it. Blocking helpers poll ``cancelled`` or call
    ``wait`` and raise ``OperationCancelledError`` as soon as it fires.
    """

    def __init__(self, deadline: Optional[float] = None, clock: Optional[Clock] = None) -> None:
        self._event = threading.Event()
        self._deadline = deadline
        self._clock = clock or SYSTEM_CLOCK

    @classmethod
    def with_timeout(cls, seconds: float, clock: Optional[Clock] = None) -> "CancelToken":
        clock = clock or SYSTEM_CLOCK
        return cls(deadline=clock.monotonic() + seconds, clock=clock)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and self._clock.monotonic() >= self._deadline

    @property
    def reason(self) -> str:
        if self._event.is_set():
            return "cancelled"
        return "deadline_exceeded"

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(self._deadline - self._clock.monotonic(), 0.0)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelledError(self.reason)

    def wait(self, timeout: float) -> bool:
        remaining = self.remaining()
        if remaining is not None:
            timeout = min(timeout, remaining)
        self._event.wait(max(timeout, 0.0))
        return self.cancelled
