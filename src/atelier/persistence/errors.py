"""Custom persistence exceptions."""

from __future__ import annotations


class RepositoryError(RuntimeError):
    """Base class for persistence layer errors."""


class RecoveryCorruptionError(RepositoryError):
    """Raised when a stored recovery record can no longer be decoded."""

    def __init__(self, batch_id: str, detail: str) -> None:
        super().__init__(f"Recovery record {batch_id} is unreadable: {detail}")
        self.batch_id = batch_id
        self.detail = detail
