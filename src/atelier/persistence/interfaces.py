"""Persistence layer abstractions for repositories and unit of work."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from types import TracebackType
from typing import Protocol

from atelier.domain import AssetId, BatchId, JobId, RecoveryRecord


class RecoveryRecordRepository(Protocol):
    """Durable storage for batches recorded as potentially interrupted."""

    async def get(self, batch_id: BatchId) -> RecoveryRecord | None: ...

    async def list_for_environment(
        self,
        environment: str,
        asset: AssetId | None = None,
    ) -> Sequence[RecoveryRecord]: ...

    async def upsert(self, record: RecoveryRecord) -> None: ...

    async def delete(self, batch_id: BatchId) -> None: ...

    async def delete_environment(self, environment: str) -> int: ...


class DownloadUrlCacheRepository(Protocol):
    """Resolved download URLs keyed by job id."""

    async def get(self, job_id: JobId) -> str | None: ...

    async def get_many(self, job_ids: Iterable[JobId]) -> Mapping[JobId, str]: ...

    async def put(self, job_id: JobId, url: str) -> None: ...

    async def delete_many(self, job_ids: Iterable[JobId]) -> None: ...


class UnitOfWork(Protocol):
    """Transactional boundary for repository operations."""

    recovery_repository: RecoveryRecordRepository
    url_cache_repository: DownloadUrlCacheRepository

    async def __aenter__(self) -> UnitOfWork: ...

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...
