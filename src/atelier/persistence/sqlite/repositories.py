"""SQLite repository implementations."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence

from sqlalchemy import Select, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.domain import AssetId, BatchId, JobId, RecoveryRecord
from atelier.persistence.errors import RecoveryCorruptionError
from atelier.persistence.interfaces import DownloadUrlCacheRepository, RecoveryRecordRepository
from atelier.utils.time import ensure_utc, utc_now

from .models import DownloadUrlRow, RecoveryRecordRow

logger = logging.getLogger(__name__)


def _decode(row: RecoveryRecordRow) -> RecoveryRecord:
    try:
        return RecoveryRecord.model_validate_json(row.payload)
    except (ValueError, TypeError) as exc:
        raise RecoveryCorruptionError(row.batch_id, str(exc)) from exc


class SQLiteRecoveryRecordRepository(RecoveryRecordRepository):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, batch_id: BatchId) -> RecoveryRecord | None:
        row = await self._session.get(RecoveryRecordRow, str(batch_id))
        if row is None:
            return None
        return _decode(row)

    async def list_for_environment(
        self,
        environment: str,
        asset: AssetId | None = None,
    ) -> Sequence[RecoveryRecord]:
        stmt: Select[tuple[RecoveryRecordRow]] = select(RecoveryRecordRow).where(
            RecoveryRecordRow.environment == environment
        )
        if asset is not None:
            stmt = stmt.where(RecoveryRecordRow.asset_id == str(asset))
        stmt = stmt.order_by(RecoveryRecordRow.created_at)
        result = await self._session.execute(stmt)
        records: list[RecoveryRecord] = []
        for row in result.scalars().all():
            try:
                records.append(_decode(row))
            except RecoveryCorruptionError as exc:
                logger.warning("Dropping recovery record: %s", exc)
                await self._session.delete(row)
        return records

    async def upsert(self, record: RecoveryRecord) -> None:
        row = await self._session.get(RecoveryRecordRow, str(record.batch_id))
        payload = record.model_dump_json()
        if row is None:
            row = RecoveryRecordRow(
                batch_id=str(record.batch_id),
                environment=record.environment,
                asset_id=str(record.asset),
                kind=record.batch.kind.value,
                session_id=str(record.session_id),
                created_at=ensure_utc(record.created_at),
                payload=payload,
            )
            self._session.add(row)
        else:
            row.environment = record.environment
            row.asset_id = str(record.asset)
            row.kind = record.batch.kind.value
            row.session_id = str(record.session_id)
            row.payload = payload

    async def delete(self, batch_id: BatchId) -> None:
        row = await self._session.get(RecoveryRecordRow, str(batch_id))
        if row is not None:
            await self._session.delete(row)

    async def delete_environment(self, environment: str) -> int:
        result = await self._session.execute(
            delete(RecoveryRecordRow).where(RecoveryRecordRow.environment == environment)
        )
        return int(result.rowcount or 0)


class SQLiteDownloadUrlCacheRepository(DownloadUrlCacheRepository):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, job_id: JobId) -> str | None:
        row = await self._session.get(DownloadUrlRow, str(job_id))
        return None if row is None else row.url

    async def get_many(self, job_ids: Iterable[JobId]) -> Mapping[JobId, str]:
        wanted = {str(job_id): job_id for job_id in job_ids}
        if not wanted:
            return {}
        stmt: Select[tuple[DownloadUrlRow]] = select(DownloadUrlRow).where(
            DownloadUrlRow.job_id.in_(list(wanted))
        )
        result = await self._session.execute(stmt)
        return {wanted[row.job_id]: row.url for row in result.scalars().all()}

    async def put(self, job_id: JobId, url: str) -> None:
        row = await self._session.get(DownloadUrlRow, str(job_id))
        if row is None:
            self._session.add(DownloadUrlRow(job_id=str(job_id), url=url, created_at=utc_now()))
        else:
            row.url = url

    async def delete_many(self, job_ids: Iterable[JobId]) -> None:
        keys = [str(job_id) for job_id in job_ids]
        if not keys:
            return
        await self._session.execute(delete(DownloadUrlRow).where(DownloadUrlRow.job_id.in_(keys)))


__all__ = ["SQLiteDownloadUrlCacheRepository", "SQLiteRecoveryRecordRepository"]
