"""Retry and timeout policy."""

from __future__ import annotations

from dataclasses import dataclass

from atelier.config import AppSettings


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Tiered deadlines for download attempts.

    The first group of an attempt gets ``download_timeout``; later groups only get
    ``status_check_timeout`` since the remote queue has usually moved on by then.
    The attempt numbered ``max_retries`` is the last one and has no deadline.
    """

    max_retries: int = 6
    download_timeout: float = 90.0
    status_check_timeout: float = 10.0
    poll_interval: float = 1.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.download_timeout <= 0 or self.status_check_timeout <= 0:
            raise ValueError("timeouts must be positive")

    @classmethod
    def from_settings(cls, settings: AppSettings) -> RetryPolicy:
        return cls(
            max_retries=settings.retry_count,
            download_timeout=settings.download_retry_timeout,
            status_check_timeout=settings.status_check_timeout,
            poll_interval=settings.poll_interval,
        )

    @property
    def total_attempts(self) -> int:
        return self.max_retries + 1

    def is_retryable(self, attempt: int) -> bool:
        return attempt < self.max_retries

    def group_deadline(self, position: int, *, retryable: bool) -> float | None:
        """Seconds allowed for the group at ``position`` within one attempt."""

        if not retryable:
            return None
        return self.download_timeout if position == 0 else self.status_check_timeout


__all__ = ["RetryPolicy"]
