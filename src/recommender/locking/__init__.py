from recommender.locking.file_lock import FileLock, LockConfig, LockError, LockInfo

__all__ = [
    "FileLock",
    "LockConfig",
    "LockError",
    "LockInfo",
]
