"""Durable log of batches that may have been interrupted mid-download."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from uuid import uuid4

from atelier.domain import (
    AssetId,
    Batch,
    BatchId,
    JobGroup,
    JobId,
    RecoveryRecord,
    SessionId,
)
from atelier.persistence import RecoveryCorruptionError, UnitOfWork

UnitOfWorkFactory = Callable[[], UnitOfWork]


class RecoveryLog:
    """Records submitted batches and resolved download URLs so work survives a restart.

    Records are scoped to one backend environment. Each log instance tags what it
    writes with a session id; records carrying another session id were left behind
    by an earlier process and are offered for resumption.
    """

    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        *,
        environment: str,
        session_id: SessionId | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._environment = environment
        self._session_id = session_id or SessionId(uuid4())
        self._logger = logger or logging.getLogger(__name__)

    @property
    def environment(self) -> str:
        return self._environment

    @property
    def session_id(self) -> SessionId:
        return self._session_id

    async def record(self, batch: Batch) -> RecoveryRecord:
        """Persist ``batch`` as potentially interrupted. Idempotent per batch id."""

        async with self._uow_factory() as uow:
            existing = await self._safe_get(uow, batch.batch_id)
            record = RecoveryRecord(
                batch=batch,
                environment=self._environment,
                session_id=self._session_id,
            )
            if existing is not None:
                record = record.model_copy(update={"created_at": existing.created_at})
            await uow.recovery_repository.upsert(record)
            await uow.commit()
        self._logger.debug(
            "Recorded batch %s for %s (%d groups)", batch.batch_id, batch.asset, len(batch.groups)
        )
        return record

    async def resolve(self, batch: Batch, groups: Iterable[JobGroup] | None = None) -> int:
        """Remove ``groups`` (or the whole batch) from the log.

        Returns the number of groups still recorded for the batch afterwards. The
        record is deleted once no group remains, and the cached URLs of the removed
        groups are dropped with it.
        """

        targets = None if groups is None else tuple(groups)
        async with self._uow_factory() as uow:
            existing = await self._safe_get(uow, batch.batch_id)
            if existing is None:
                orphaned = batch.groups if targets is None else targets
                await uow.url_cache_repository.delete_many(_job_ids(orphaned))
                await uow.commit()
                return 0
            if targets is None:
                keys = existing.batch.group_keys
            else:
                keys = frozenset(group.key for group in targets)
            removed = existing.removed_groups(keys)
            remaining = existing.without(keys)
            await uow.url_cache_repository.delete_many(_job_ids(removed))
            if remaining.is_empty:
                await uow.recovery_repository.delete(batch.batch_id)
                left = 0
            else:
                await uow.recovery_repository.upsert(remaining)
                left = len(remaining.batch.groups)
            await uow.commit()
        self._logger.debug(
            "Resolved %d groups of batch %s, %d left", len(removed), batch.batch_id, left
        )
        return left

    async def cache_url(self, job_id: JobId, url: str) -> None:
        async with self._uow_factory() as uow:
            await uow.url_cache_repository.put(job_id, url)
            await uow.commit()

    async def has_cached_url(self, job_id: JobId) -> bool:
        return await self.cached_url(job_id) is not None

    async def cached_url(self, job_id: JobId) -> str | None:
        async with self._uow_factory() as uow:
            return await uow.url_cache_repository.get(job_id)

    async def cached_urls(self, job_ids: Iterable[JobId]) -> Mapping[JobId, str]:
        async with self._uow_factory() as uow:
            return await uow.url_cache_repository.get_many(list(job_ids))

    async def enumerate(self, asset: AssetId | None = None) -> Sequence[Batch]:
        """Return the recorded batches for ``asset`` (every asset when omitted)."""

        return [record.batch for record in await self._records(asset)]

    async def enumerate_resumable(self, asset: AssetId | None = None) -> Sequence[RecoveryRecord]:
        """Return records left behind by other sessions, typically a previous process."""

        return [
            record for record in await self._records(asset) if record.session_id != self._session_id
        ]

    async def count(self, asset: AssetId | None = None) -> int:
        return len(await self._records(asset))

    async def discard(self, batch_id: BatchId) -> bool:
        async with self._uow_factory() as uow:
            existing = await self._safe_get(uow, batch_id)
            if existing is None:
                return False
            await uow.url_cache_repository.delete_many(existing.batch.job_ids)
            await uow.recovery_repository.delete(batch_id)
            await uow.commit()
        self._logger.info("Discarded interrupted batch %s for %s", batch_id, existing.asset)
        return True

    async def discard_all(self) -> int:
        async with self._uow_factory() as uow:
            records = await uow.recovery_repository.list_for_environment(self._environment)
            for record in records:
                await uow.url_cache_repository.delete_many(record.batch.job_ids)
            removed = await uow.recovery_repository.delete_environment(self._environment)
            await uow.commit()
        self._logger.info("Discarded %d interrupted batches in %s", removed, self._environment)
        return removed

    async def _records(self, asset: AssetId | None) -> Sequence[RecoveryRecord]:
        async with self._uow_factory() as uow:
            records = await uow.recovery_repository.list_for_environment(self._environment, asset)
            await uow.commit()
        return records

    async def _safe_get(self, uow: UnitOfWork, batch_id: BatchId) -> RecoveryRecord | None:
        try:
            return await uow.recovery_repository.get(batch_id)
        except RecoveryCorruptionError as exc:
            self._logger.warning("Dropping recovery record: %s", exc)
            await uow.recovery_repository.delete(batch_id)
            return None


def _job_ids(groups: Iterable[JobGroup]) -> list[JobId]:
    return [job_id for group in groups for job_id in group.job_ids]


__all__ = ["RecoveryLog", "UnitOfWorkFactory"]
