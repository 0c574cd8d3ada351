from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from recommender.common.clock import CancelToken
from recommender.common.logging import get_logger
from recommender.locking.file_lock import FileLock


class JobOutcome(str, Enum):
    COMPLETED = "completed"
    ALREADY_RUNNING = "already_running"


@dataclass(frozen=True)
class JobResult:
    key: str
    outcome: JobOutcome
    value: Any = None

    @property
    def message(self) -> str:
        if self.outcome is JobOutcome.ALREADY_RUNNING:
            return f"{self.key} already in progress"
        return f"{self.key} completed"


@dataclass(frozen=True)
class JobsConfig:
    enrich_workers: int = 4
    job_timeout_seconds: float = 300.0

    @staticmethod
    def from_settings(raw: dict) -> "JobsConfig":
        jobs = raw.get("jobs", {}) or {}
        return JobsConfig(
            enrich_workers=max(1, int(jobs.get("enrich_workers", 4))),
            job_timeout_seconds=float(jobs.get("job_timeout_seconds", 300)),
        )


@dataclass
class JobRunner:
    """Serializes scheduled jobs across processes through per-key file locks.

    Contention is an expected outcome and is reported as ALREADY_RUNNING;
    lock infrastructure failures and errors raised by the job propagate.
    """

    lock: FileLock
    timeout_seconds: float
    logger: Optional[logging.Logger] = None

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = get_logger()

    def run(
        self,
        key: str,
        work: Callable[[], Any],
        cancel: Optional[CancelToken] = None,
    ) -> JobResult:
        if not self.lock.try_acquire(key, self.timeout_seconds, cancel):
            self.logger.info("job_already_running", extra={"job": key})
            return JobResult(key=key, outcome=JobOutcome.ALREADY_RUNNING)
        started = time.monotonic()
        self.logger.info("job_started", extra={"job": key})
        try:
            value = work()
        except Exception:
            self.logger.exception("job_failed", extra={"job": key})
            raise
        finally:
            self.lock.release(key)
        self.logger.info(
            "job_completed",
            extra={"job": key, "duration_ms": int((time.monotonic() - started) * 1000)},
        )
        return JobResult(key=key, outcome=JobOutcome.COMPLETED, value=value)
