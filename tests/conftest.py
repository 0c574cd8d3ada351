import sys
import threading
import time
from pathlib import Path
from typing import List, Optional

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from recommender.common.clock import CancelToken, OperationCancelledError


class FakeClock:
    """Virtual clock: ``sleep`` advances time instantly and records the delay."""

    def __init__(self, start: float = 1000.0, wall: Optional[float] = None) -> None:
        self._now = start
        self._wall_offset = (time.time() if wall is None else wall) - start
        self._lock = threading.Lock()
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        with self._lock:
            return self._now

    def time(self) -> float:
        with self._lock:
            return self._now + self._wall_offset

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._now += seconds

    def sleep(self, seconds: float, cancel: Optional[CancelToken] = None) -> None:
        if cancel is not None:
            cancel.raise_if_cancelled()
            remaining = cancel.remaining()
            if remaining is not None and remaining < seconds:
                self.advance(remaining)
                raise OperationCancelledError(cancel.reason)
        self.sleeps.append(seconds)
        self.advance(max(seconds, 0.0))
        if cancel is not None:
            cancel.raise_if_cancelled()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def lock_dir(tmp_path) -> Path:
    return tmp_path / "locks"


@pytest.fixture
def schema_path() -> Path:
    return REPO_ROOT / "config" / "schema.json"


@pytest.fixture
def settings_path() -> Path:
    return REPO_ROOT / "config" / "settings.yaml"
