from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Optional, Tuple

from recommender.common.clock import SYSTEM_CLOCK, Clock
from recommender.common.logging import get_logger

DEFAULT_SWEEP_INTERVAL_SECONDS = 30 * 60


@dataclass
class _Entry:
    value: Any
    created: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.created > self.ttl


class ExpiringCache:
    """In-memory map with per-entry TTL.

    Reads expire lazily; ``start`` launches a daemon thread that sweeps every
    ``sweep_interval`` seconds so memory stays bounded without reads. Both
    paths use the same expiry rule.
    """

    def __init__(
        self,
        default_ttl: float,
        *,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        if sweep_interval <= 0:
            raise ValueError("sweep_interval must be positive")
        self._default_ttl = default_ttl
        self._sweep_interval = sweep_interval
        self._clock = clock or SYSTEM_CLOCK
        self._logger = logger or get_logger()
        self._entries: Dict[Hashable, _Entry] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        if ttl is None:
            ttl = self._default_ttl
        elif ttl < 0:
            raise ValueError("ttl must not be negative")
        entry = _Entry(value=value, created=self._clock.monotonic(), ttl=ttl)
        with self._lock:
            self._entries[key] = entry

    def get(self, key: Hashable) -> Tuple[Any, bool]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None, False
            if entry.expired(self._clock.monotonic()):
                del self._entries[key]
                return None, False
            return entry.value, True

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        self._logger.debug("cache_cleared")

    def sweep(self) -> int:
        with self._lock:
            now = self._clock.monotonic()
            expired = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in expired:
                del self._entries[key]
            remaining = len(self._entries)
        if expired:
            self._logger.debug(
                "cache_swept",
                extra={"expired_count": len(expired), "remaining_count": remaining},
            )
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def start(self) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._run_sweeper, name="expiring-cache-sweeper", daemon=True
        )
        self._sweeper.start()

    def close(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None

    def __enter__(self) -> "ExpiringCache":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _run_sweeper(self) -> None:
        while not self._stop.wait(self._sweep_interval):
            self.sweep()
