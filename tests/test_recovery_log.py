from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

from sqlalchemy import insert, update
from sqlalchemy.ext.asyncio import create_async_engine

from atelier.domain import (
    ArtifactKind,
    AssetId,
    Batch,
    BatchId,
    JobGroup,
    JobId,
    ProgressId,
)
from atelier.persistence import InMemoryUnitOfWork, UnitOfWork
from atelier.persistence.sqlite import create_sqlite_unit_of_work_factory
from atelier.persistence.sqlite.models import RecoveryRecordRow
from atelier.recovery import RecoveryLog


def _db_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path/'recovery.db'}"


def _factory(uow: InMemoryUnitOfWork):
    def factory() -> UnitOfWork:
        return uow

    return factory


def _batch(groups: int = 3, asset: str = "props/crate.png") -> Batch:
    return Batch(
        asset=AssetId(asset),
        kind=ArtifactKind.IMAGE,
        progress_id=ProgressId(1),
        groups=tuple(JobGroup.single("image", JobId(uuid4()), seed=i) for i in range(groups)),
    )


def test_recorded_batch_survives_restart(tmp_path: Path) -> None:
    url = _db_url(tmp_path)
    batch = _batch()

    first = RecoveryLog(create_sqlite_unit_of_work_factory(url), environment="test")
    asyncio.run(first.record(batch))

    # a second process opens the same database
    second = RecoveryLog(create_sqlite_unit_of_work_factory(url), environment="test")

    async def _load() -> tuple[list[Batch], list[BatchId], list[BatchId]]:
        batches = list(await second.enumerate(batch.asset))
        resumable = [record.batch_id for record in await second.enumerate_resumable()]
        own = [record.batch_id for record in await first.enumerate_resumable()]
        return batches, resumable, own

    batches, resumable, own = asyncio.run(_load())
    assert batches == [batch]
    assert batches[0].groups == batch.groups
    assert resumable == [batch.batch_id]
    assert own == []


def test_record_is_idempotent() -> None:
    uow = InMemoryUnitOfWork()
    log = RecoveryLog(_factory(uow), environment="test")
    batch = _batch()

    async def _run() -> tuple[int, bool]:
        first = await log.record(batch)
        second = await log.record(batch)
        return await log.count(), first.created_at == second.created_at

    count, same_timestamp = asyncio.run(_run())
    assert count == 1
    assert same_timestamp


def test_partial_resolve_shrinks_then_deletes() -> None:
    uow = InMemoryUnitOfWork()
    log = RecoveryLog(_factory(uow), environment="test")
    batch = _batch(3)
    first, second, third = batch.groups

    async def _run() -> None:
        await log.record(batch)
        for index, group in enumerate(batch.groups):
            await log.cache_url(group.primary_job.job_id, f"https://cdn/{index}.png")

        assert await log.resolve(batch, [first]) == 2
        assert not await log.has_cached_url(first.primary_job.job_id)
        assert await log.cached_url(second.primary_job.job_id) == "https://cdn/1.png"
        stored = await log.enumerate()
        assert stored[0].groups == (second, third)

        # resolving with no groups is a no-op
        assert await log.resolve(batch, []) == 2

        assert await log.resolve(batch, [second, third]) == 0
        assert await log.count() == 0
        assert await log.cached_urls(batch.job_ids) == {}

    asyncio.run(_run())


def test_resolve_without_record_clears_cached_urls() -> None:
    uow = InMemoryUnitOfWork()
    log = RecoveryLog(_factory(uow), environment="test")
    batch = _batch(2)

    async def _run() -> dict[JobId, str]:
        for group in batch.groups:
            await log.cache_url(group.primary_job.job_id, "https://cdn/x.png")
        assert await log.resolve(batch) == 0
        return dict(await log.cached_urls(batch.job_ids))

    assert asyncio.run(_run()) == {}


def test_cached_url_survives_restart(tmp_path: Path) -> None:
    url = _db_url(tmp_path)
    job_id = JobId(uuid4())

    first = RecoveryLog(create_sqlite_unit_of_work_factory(url), environment="test")
    asyncio.run(first.cache_url(job_id, "https://cdn/a.png"))

    second = RecoveryLog(create_sqlite_unit_of_work_factory(url), environment="test")
    assert asyncio.run(second.cached_url(job_id)) == "https://cdn/a.png"
    assert asyncio.run(second.has_cached_url(JobId(uuid4()))) is False


def test_corrupt_record_is_dropped_with_warning(tmp_path: Path, caplog) -> None:
    url = _db_url(tmp_path)
    log = RecoveryLog(create_sqlite_unit_of_work_factory(url), environment="test")
    good = _batch()

    async def _corrupt() -> None:
        await log.record(good)
        engine = create_async_engine(url)
        async with engine.begin() as conn:
            for payload in ('{"batch": {"groups": "not a list"}}', '{"batch": '):
                await conn.execute(
                    insert(RecoveryRecordRow).values(
                        batch_id=str(uuid4()),
                        environment="test",
                        asset_id="props/crate.png",
                        kind="image",
                        session_id=str(uuid4()),
                        created_at=datetime.now(UTC),
                        payload=payload,
                    )
                )
        await engine.dispose()

    asyncio.run(_corrupt())

    with caplog.at_level("WARNING"):
        batches = asyncio.run(log.enumerate())

    assert [batch.batch_id for batch in batches] == [good.batch_id]
    assert "Dropping recovery record" in caplog.text
    assert caplog.text.count("Dropping recovery record") == 2
    assert asyncio.run(log.count()) == 1


def test_resolve_drops_record_with_truncated_payload(tmp_path: Path) -> None:
    url = _db_url(tmp_path)
    log = RecoveryLog(create_sqlite_unit_of_work_factory(url), environment="test")
    batch = _batch()

    async def _run() -> int:
        await log.record(batch)
        engine = create_async_engine(url)
        async with engine.begin() as conn:
            await conn.execute(
                update(RecoveryRecordRow)
                .where(RecoveryRecordRow.batch_id == str(batch.batch_id))
                .values(payload='{"batch": ')
            )
        await engine.dispose()
        await log.resolve(batch, batch.groups[:1])
        return await log.count()

    assert asyncio.run(_run()) == 0


def test_records_are_scoped_by_environment_and_discardable() -> None:
    uow = InMemoryUnitOfWork()
    production = RecoveryLog(_factory(uow), environment="production")
    staging = RecoveryLog(_factory(uow), environment="staging")
    kept, dropped = _batch(asset="a.png"), _batch(asset="b.png")

    async def _run() -> None:
        await production.record(kept)
        await production.record(dropped)
        await staging.record(_batch(asset="c.png"))

        assert await production.count() == 2
        assert await production.count(AssetId("a.png")) == 1
        assert await production.discard(dropped.batch_id) is True
        assert await production.discard(dropped.batch_id) is False
        assert [batch.batch_id for batch in await production.enumerate()] == [kept.batch_id]

        assert await production.discard_all() == 1
        assert await production.count() == 0
        assert await staging.count() == 1

    asyncio.run(_run())
