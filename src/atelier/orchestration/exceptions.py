"""Orchestration-specific exceptions."""

from __future__ import annotations

from collections.abc import Sequence

from atelier.domain import AlreadyHandled, BatchId, HardFailed


class OrchestrationError(RuntimeError):
    """Base class for pipeline failures."""


class DownloadAborted(OrchestrationError):
    """Raised when a download attempt ends with nothing fulfilled and nothing pending.

    The failures behind it were already reported to the message sink and travel in
    ``failed``. A resumable abort leaves the batch untouched, for instance when the
    backend is unconfigured.
    """

    def __init__(
        self,
        batch_id: BatchId,
        reason: str,
        *,
        resumable: bool = False,
        failed: Sequence[HardFailed | AlreadyHandled] = (),
    ) -> None:
        super().__init__(f"Download of batch {batch_id} aborted: {reason}")
        self.batch_id = batch_id
        self.reason = reason
        self.resumable = resumable
        self.failed = tuple(failed)


class InternalInvariantViolation(OrchestrationError):
    """Raised when the pipeline observes a state its own accounting forbids."""
