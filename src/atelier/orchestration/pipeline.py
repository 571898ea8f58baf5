"""Facade tying quoting, submission, download and recovery together."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Sequence

from atelier.domain import (
    AssetId,
    Batch,
    BatchId,
    GenerationSpec,
    ProgressId,
    QuoteOutcome,
    RecoveryRecord,
    RetryReport,
    SubmissionAborted,
)
from atelier.recovery import RecoveryLog

from .placeholders import PlaceholderTracker
from .precache import ArtifactCatalog, PrecacheGate
from .quote import QuoteController
from .retry import RetryController
from .submitter import JobSubmitter


class GenerationPipeline:
    """Entry point used by the CLI and by embedding applications."""

    def __init__(
        self,
        quotes: QuoteController,
        submitter: JobSubmitter,
        retry: RetryController,
        recovery_log: RecoveryLog,
        placeholders: PlaceholderTracker,
        precache: PrecacheGate,
        *,
        catalog: ArtifactCatalog | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._quotes = quotes
        self._submitter = submitter
        self._retry = retry
        self._recovery_log = recovery_log
        self._placeholders = placeholders
        self._precache = precache
        self._catalog = catalog or ArtifactCatalog()
        self._logger = logger or logging.getLogger(__name__)
        self._progress_ids = itertools.count(1)

    @property
    def catalog(self) -> ArtifactCatalog:
        return self._catalog

    @property
    def placeholders(self) -> PlaceholderTracker:
        return self._placeholders

    def next_progress_id(self) -> ProgressId:
        return ProgressId(next(self._progress_ids))

    async def quote(self, asset: AssetId, spec: GenerationSpec) -> QuoteOutcome | None:
        return await self._quotes.request_quote(asset, spec)

    async def generate(
        self,
        asset: AssetId,
        spec: GenerationSpec,
        *,
        progress_id: ProgressId | None = None,
    ) -> RetryReport | SubmissionAborted:
        """Submit ``spec`` and download its results."""

        submitted = await self._submitter.submit(
            asset, spec, progress_id if progress_id is not None else self.next_progress_id()
        )
        if isinstance(submitted, SubmissionAborted):
            return submitted
        return await self._download(submitted)

    async def interrupted(self, asset: AssetId | None = None) -> Sequence[Batch]:
        return await self._recovery_log.enumerate(asset)

    async def resumable(self, asset: AssetId | None = None) -> Sequence[RecoveryRecord]:
        """Batches left behind by an earlier process."""

        return await self._recovery_log.enumerate_resumable(asset)

    async def resume(
        self,
        batch_id: BatchId | None = None,
        *,
        asset: AssetId | None = None,
    ) -> list[RetryReport]:
        """Resume batches interrupted in earlier sessions, or only ``batch_id`` when given."""

        batches = [record.batch for record in await self.resumable(asset)]
        if batch_id is not None:
            batches = [batch for batch in batches if batch.batch_id == batch_id]
        reports: list[RetryReport] = []
        for batch in batches:
            self._logger.info(
                "Resuming batch %s for %s (%d groups)",
                batch.batch_id,
                batch.asset,
                len(batch.groups),
            )
            self._placeholders.set(batch.asset, batch.progress_id, len(batch.groups))
            reports.append(await self._download(batch))
        return reports

    async def discard(self, batch_id: BatchId) -> bool:
        return await self._recovery_log.discard(batch_id)

    async def discard_all(self) -> int:
        return await self._recovery_log.discard_all()

    async def _download(self, batch: Batch) -> RetryReport:
        report = await self._retry.execute(batch)
        if report.artifacts:
            await self._precache.run(batch.asset, self._catalog)
        return report


__all__ = ["GenerationPipeline"]
