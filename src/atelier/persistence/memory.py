"""In-memory repository implementations for unit testing."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from copy import deepcopy
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any

from pydantic import ValidationError

from atelier.domain import AssetId, BatchId, JobId, RecoveryRecord
from atelier.persistence.errors import RecoveryCorruptionError
from atelier.persistence.interfaces import (
    DownloadUrlCacheRepository,
    RecoveryRecordRepository,
    UnitOfWork,
)

logger = logging.getLogger(__name__)


def _decode(batch_id: str, payload: Mapping[str, Any]) -> RecoveryRecord:
    try:
        return RecoveryRecord.model_validate(deepcopy(dict(payload)))
    except ValidationError as exc:
        raise RecoveryCorruptionError(batch_id, str(exc)) from exc


@dataclass
class InMemoryRecoveryRecordRepository(RecoveryRecordRepository):
    # payloads are kept in their serialized form so reads behave like durable storage
    _records: dict[str, dict[str, Any]] = field(default_factory=dict)

    async def get(self, batch_id: BatchId) -> RecoveryRecord | None:
        payload = self._records.get(str(batch_id))
        if payload is None:
            return None
        return _decode(str(batch_id), payload)

    async def list_for_environment(
        self,
        environment: str,
        asset: AssetId | None = None,
    ) -> Sequence[RecoveryRecord]:
        records: list[RecoveryRecord] = []
        for batch_id, payload in list(self._records.items()):
            try:
                record = _decode(batch_id, payload)
            except RecoveryCorruptionError as exc:
                logger.warning("Dropping recovery record: %s", exc)
                self._records.pop(batch_id, None)
                continue
            if record.environment != environment:
                continue
            if asset is not None and record.asset != asset:
                continue
            records.append(record)
        return sorted(records, key=lambda r: r.created_at)

    async def upsert(self, record: RecoveryRecord) -> None:
        self._records[str(record.batch_id)] = record.model_dump(mode="json")

    async def delete(self, batch_id: BatchId) -> None:
        self._records.pop(str(batch_id), None)

    async def delete_environment(self, environment: str) -> int:
        doomed = [
            batch_id
            for batch_id, payload in self._records.items()
            if payload.get("environment") == environment
        ]
        for batch_id in doomed:
            del self._records[batch_id]
        return len(doomed)


@dataclass
class InMemoryDownloadUrlCacheRepository(DownloadUrlCacheRepository):
    _urls: dict[JobId, str] = field(default_factory=dict)

    async def get(self, job_id: JobId) -> str | None:
        return self._urls.get(job_id)

    async def get_many(self, job_ids: Iterable[JobId]) -> Mapping[JobId, str]:
        return {job_id: self._urls[job_id] for job_id in job_ids if job_id in self._urls}

    async def put(self, job_id: JobId, url: str) -> None:
        self._urls[job_id] = url

    async def delete_many(self, job_ids: Iterable[JobId]) -> None:
        for job_id in job_ids:
            self._urls.pop(job_id, None)


@dataclass
class InMemoryUnitOfWork(UnitOfWork):
    recovery_repository: InMemoryRecoveryRecordRepository = field(
        default_factory=InMemoryRecoveryRecordRepository
    )
    url_cache_repository: InMemoryDownloadUrlCacheRepository = field(
        default_factory=InMemoryDownloadUrlCacheRepository
    )
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def __aenter__(self) -> InMemoryUnitOfWork:
        await self._lock.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._lock.release()

    async def commit(self) -> None:
        return None

    async def rollback(self) -> None:
        return None


__all__ = [
    "InMemoryDownloadUrlCacheRepository",
    "InMemoryRecoveryRecordRepository",
    "InMemoryUnitOfWork",
]
