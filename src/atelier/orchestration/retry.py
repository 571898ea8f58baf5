"""Bounded retry loop around the download engine."""

from __future__ import annotations

import asyncio
import logging

import httpx

from atelier.domain import (
    AssetId,
    Batch,
    BatchStatus,
    Fulfilled,
    HardFailed,
    JobGroup,
    RetryReport,
    StoredArtifact,
)
from atelier.providers import ProfileRegistry, ProviderError
from atelier.recovery import RecoveryLog
from atelier.transport import TransportLease

from .download import BatchDownloadEngine
from .exceptions import DownloadAborted, InternalInvariantViolation
from .materialize import ArtifactStore, Materializer
from .observers import LoggingObserver, MessageSink, ProgressReporter
from .placeholders import PlaceholderTracker
from .policy import RetryPolicy

_DOWNLOAD_START = 0.25
_DOWNLOAD_END = 0.95


class RetryController:
    """Drives a batch through up to ``max_retries + 1`` download attempts.

    Fulfilled groups are stored as soon as their attempt returns and the recovery
    record shrinks after every attempt. Only timed-out groups carry over, and the
    last attempt has no deadline, so a timeout there is a defect.
    """

    def __init__(
        self,
        engine: BatchDownloadEngine,
        recovery_log: RecoveryLog,
        store: ArtifactStore,
        placeholders: PlaceholderTracker,
        lease: TransportLease,
        policy: RetryPolicy,
        profiles: ProfileRegistry,
        *,
        materializer: Materializer | None = None,
        progress: ProgressReporter | None = None,
        messages: MessageSink | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        default_observer = LoggingObserver()
        self._engine = engine
        self._recovery_log = recovery_log
        self._store = store
        self._placeholders = placeholders
        self._lease = lease
        self._policy = policy
        self._profiles = profiles
        self._materializer = materializer
        self._progress = progress or default_observer
        self._messages = messages or default_observer
        self._logger = logger or logging.getLogger(__name__)

    async def execute(self, batch: Batch) -> RetryReport:
        report = RetryReport(batch=batch, status=BatchStatus.DONE)
        blank = await self._is_blank(batch.asset)
        try:
            async with self._lease.lease() as client:
                try:
                    await self._run_attempts(client, batch, report)
                except DownloadAborted as exc:
                    self._logger.warning("%s", exc)
                    report.dropped.extend(exc.failed)
                    if exc.resumable:
                        report.status = BatchStatus.FAILED
                        self._placeholders.remove(batch.asset, batch.progress_id)
                        return report
                    # groups stored by earlier attempts still count
                    if not report.artifacts:
                        report.status = BatchStatus.FAILED
        except (asyncio.CancelledError, InternalInvariantViolation):
            # the recovery record stays so the batch can be resumed
            self._placeholders.remove(batch.asset, batch.progress_id)
            raise

        if report.succeeded:
            report.applied = await self._finish(batch, report, blank)
        await self._recovery_log.resolve(batch)
        self._placeholders.remove(batch.asset, batch.progress_id)
        if report.succeeded:
            self._progress.report_progress(batch.progress_id, 1.0, "Done.")
        return report

    async def _run_attempts(
        self,
        client: httpx.AsyncClient,
        batch: Batch,
        report: RetryReport,
    ) -> None:
        total_groups = len(batch.groups)
        pending = batch
        for attempt in range(self._policy.total_attempts):
            retryable = self._policy.is_retryable(attempt)
            report.attempts = attempt + 1
            done = total_groups - len(pending.groups)
            self._progress.report_progress(
                batch.progress_id,
                _DOWNLOAD_START + (_DOWNLOAD_END - _DOWNLOAD_START) * done / max(total_groups, 1),
                "Downloading results",
            )

            result = await self._engine.attempt(pending.with_retryable(retryable))

            stored, unstored = await self._materialize(client, batch, result.fulfilled)
            report.artifacts.extend(stored)
            report.dropped.extend(result.failed)
            report.dropped.extend(unstored)
            resolved: list[JobGroup] = [artifact.group for artifact in stored]
            resolved.extend(outcome.group for outcome in result.failed)
            resolved.extend(outcome.group for outcome in unstored)
            if resolved:
                await self._recovery_log.resolve(batch, resolved)

            remaining = result.remaining
            if not remaining.group_keys <= pending.group_keys:
                raise InternalInvariantViolation(
                    f"Attempt {attempt + 1} on batch {batch.batch_id} re-admitted resolved groups"
                )
            if remaining.is_empty:
                return
            if not retryable:
                raise InternalInvariantViolation(
                    f"The last download attempt ({attempt + 1}) on batch {batch.batch_id} "
                    f"timed out on {len(remaining.groups)} groups; it is never supposed to time out"
                )
            self._logger.info(
                "Download timed out. Retrying (%d/%d)...", attempt + 1, self._policy.max_retries
            )
            pending = remaining
        raise InternalInvariantViolation(f"Batch {batch.batch_id} exhausted its attempts")

    async def _materialize(
        self,
        client: httpx.AsyncClient,
        batch: Batch,
        fulfilled: tuple[Fulfilled, ...],
    ) -> tuple[list[StoredArtifact], list[HardFailed]]:
        stored: list[StoredArtifact] = []
        failed: list[HardFailed] = []
        for outcome in fulfilled:
            try:
                artifact = await self._store.store(client, batch, outcome.group, outcome.urls)
            except (ProviderError, httpx.HTTPError, OSError) as exc:
                job_id = outcome.group.primary_job.job_id
                self._logger.warning("Storing job %s failed: %s", job_id, exc)
                reason = f"Could not store the result of job {job_id}: {exc}"
                self._messages.report_message(batch.asset, reason)
                failed.append(HardFailed(outcome.group, reason))
                continue
            self._placeholders.fulfill(batch.asset, batch.progress_id, artifact.uri)
            stored.append(artifact)
        return stored, failed

    async def _is_blank(self, asset: AssetId) -> bool:
        if self._materializer is None:
            return False
        return await self._materializer.is_blank(asset)

    async def _finish(self, batch: Batch, report: RetryReport, blank: bool) -> bool:
        if self._materializer is None or not report.artifacts:
            return False
        if not blank:
            await self._materializer.save_backup(batch.asset)
        profile = self._profiles.get(batch.kind)
        should_apply = (
            blank or batch.auto_apply or profile.auto_applies(batch.metadata.refinement_mode)
        )
        if not should_apply:
            return False
        return await self._materializer.apply_artifact(batch.asset, report.artifacts[0])


__all__ = ["RetryController"]
