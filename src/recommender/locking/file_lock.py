from __future__ import annotations

import logging
import os
import re
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Union

from recommender.common.clock import SYSTEM_CLOCK, CancelToken, Clock
from recommender.common.logging import get_logger

DEFAULT_POLL_INTERVAL = 0.1
STALE_FACTOR = 2
LOCK_SUFFIX = ".lock"
RECLAIM_SUFFIX = ".reclaim"

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class LockError(RuntimeError):
    """Lock infrastructure failure, distinct from ordinary contention."""


@dataclass(frozen=True)
class LockConfig:
    directory: Path
    timeout_seconds: float

    @staticmethod
    def from_settings(raw: dict) -> "LockConfig":
        lock = raw.get("lock", {}) or {}
        directory = lock.get("directory") or os.path.join(
            tempfile.gettempdir(), "recommender-locks"
        )
        return LockConfig(
            directory=Path(str(directory)),
            timeout_seconds=float(lock.get("timeout_seconds", 30)),
        )


@dataclass(frozen=True)
class LockInfo:
    acquired_at: int
    pid: int


def sanitize_key(key: str) -> str:
    cleaned = _UNSAFE_KEY_CHARS.sub("_", key).lstrip(".")
    if not cleaned:
        raise ValueError(f"Invalid lock key: {key!r}")
    return cleaned


class FileLock:
    """Cross-process mutual exclusion through O_EXCL lock files.

    One file per key in ``directory``; its content (unix timestamp, pid) is
    diagnostic only. A file older than twice the acquisition timeout belongs
    to a crashed holder and is reclaimed by the next acquirer.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        *,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._directory = Path(directory).resolve()
        self._clock = clock or SYSTEM_CLOCK
        self._logger = logger or get_logger()
        self._poll_interval = poll_interval

    @property
    def directory(self) -> Path:
        return self._directory

    def lock_path(self, key: str) -> Path:
        path = self._directory / f"{sanitize_key(key)}{LOCK_SUFFIX}"
        if path.parent != self._directory:
            raise ValueError(f"Lock key escapes lock directory: {key!r}")
        return path

    def try_acquire(
        self, key: str, timeout: float, cancel: Optional[CancelToken] = None
    ) -> bool:
        path = self.lock_path(key)
        self._ensure_directory()
        deadline = self._clock.monotonic() + max(timeout, 0.0)
        # A zero timeout is a single attempt; without a wait there is no
        # age that proves the holder dead.
        stale_after = STALE_FACTOR * timeout if timeout > 0 else None

        while True:
            if self._create(path):
                self._logger.debug("lock_acquired", extra={"key": key, "file": str(path)})
                return True
            if stale_after is not None and self._reclaim_if_stale(path, stale_after):
                continue
            remaining = deadline - self._clock.monotonic()
            if remaining <= 0:
                self._logger.info("lock_timeout", extra={"key": key, "file": str(path)})
                return False
            self._clock.sleep(min(self._poll_interval, remaining), cancel)

    def release(self, key: str) -> None:
        path = self.lock_path(key)
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise LockError(f"Failed to remove lock file {path}: {exc}") from exc
        self._logger.debug("lock_released", extra={"key": key, "file": str(path)})

    def read_holder(self, key: str) -> Optional[LockInfo]:
        path = self.lock_path(key)
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise LockError(f"Failed to read lock file {path}: {exc}") from exc
        try:
            return LockInfo(acquired_at=int(lines[0]), pid=int(lines[1]))
        except (IndexError, ValueError):
            return None

    @contextmanager
    def held(
        self, key: str, timeout: float, cancel: Optional[CancelToken] = None
    ) -> Iterator[bool]:
        acquired = self.try_acquire(key, timeout, cancel)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(key)

    def close(self) -> None:
        """Lifecycle hook; held locks stay held until released."""
        return None

    def _ensure_directory(self) -> None:
        try:
            self._directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            raise LockError(
                f"Failed to create lock directory {self._directory}: {exc}"
            ) from exc

    def _create(self, path: Path) -> bool:
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError:
            return False
        except OSError as exc:
            raise LockError(f"Failed to create lock file {path}: {exc}") from exc
        try:
            content = f"{int(self._clock.time())}\n{os.getpid()}\n"
            os.write(fd, content.encode("utf-8"))
        except OSError as exc:
            os.close(fd)
            self._discard(path)
            raise LockError(f"Failed to write lock file {path}: {exc}") from exc
        os.close(fd)
        return True

    def _reclaim_if_stale(self, path: Path, stale_after: float) -> bool:
        observed = self._stat(path)
        if observed is None:
            return True
        if self._age(observed) <= stale_after:
            return False

        # Reclaimers serialize on a guard file and only remove the exact file
        # they judged stale.
        guard = path.with_name(f"{path.name}{RECLAIM_SUFFIX}")
        if not self._open_guard(guard, stale_after):
            return False
        try:
            current = self._stat(path)
            if current is None:
                return True
            if (current.st_ino, current.st_mtime_ns) != (observed.st_ino, observed.st_mtime_ns):
                return False
            age = self._age(current)
            try:
                os.remove(path)
            except FileNotFoundError:
                return True
            except OSError as exc:
                raise LockError(f"Failed to reclaim stale lock {path}: {exc}") from exc
        finally:
            self._discard(guard)
        self._logger.warning(
            "lock_stale_removed",
            extra={"file": str(path), "age_seconds": round(age, 3)},
        )
        return True

    def _open_guard(self, guard: Path, stale_after: float) -> bool:
        try:
            fd = os.open(guard, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError:
            # Left behind by a reclaimer that died mid-way.
            leftover = self._stat(guard)
            if leftover is not None and self._age(leftover) > stale_after:
                self._discard(guard)
            return False
        except OSError as exc:
            raise LockError(f"Failed to create reclaim guard {guard}: {exc}") from exc
        os.close(fd)
        return True

    def _stat(self, path: Path) -> Optional[os.stat_result]:
        try:
            return os.stat(path)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise LockError(f"Failed to stat lock file {path}: {exc}") from exc

    def _age(self, info: os.stat_result) -> float:
        return self._clock.time() - info.st_mtime

    def _discard(self, path: Path) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            self._logger.error(
                "lock_file_cleanup_failed", extra={"file": str(path), "error": str(exc)}
            )
