"""Persistence layer exports."""

from .errors import RecoveryCorruptionError, RepositoryError
from .interfaces import DownloadUrlCacheRepository, RecoveryRecordRepository, UnitOfWork
from .memory import InMemoryUnitOfWork

__all__ = [
    "DownloadUrlCacheRepository",
    "InMemoryUnitOfWork",
    "RecoveryCorruptionError",
    "RecoveryRecordRepository",
    "RepositoryError",
    "UnitOfWork",
]
