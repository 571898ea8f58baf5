from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Sequence
from pathlib import Path
from typing import BinaryIO
from uuid import uuid4

import httpx
import pytest

from atelier.domain import (
    AlreadyHandled,
    ArtifactKind,
    AssetId,
    Batch,
    Fulfilled,
    GenerationJob,
    HardFailed,
    JobGroup,
    JobId,
    JobStatus,
    ProgressId,
    ResultErrorCode,
    TimedOut,
)
from atelier.orchestration import BatchDownloadEngine, DownloadAborted, RetryPolicy
from atelier.persistence import InMemoryUnitOfWork, UnitOfWork
from atelier.persistence.sqlite import create_sqlite_unit_of_work_factory
from atelier.providers import (
    DownloadUrlResult,
    GenerateResult,
    QuoteResult,
    RemoteRequest,
    UploadResult,
)
from atelier.recovery import RecoveryLog
from atelier.transport import TransportLease


class ScriptedBackend:
    """Resolves jobs according to per-job scripts.

    ``hang`` maps a job to the number of calls that never answer before it
    resolves; ``failing`` jobs report a remote failure.
    """

    environment = "test"

    def __init__(
        self,
        *,
        hang: dict[JobId, int] | None = None,
        failing: set[JobId] | None = None,
        configured: bool = True,
    ) -> None:
        self.hang = dict(hang or {})
        self.failing = set(failing or ())
        self.configured = configured
        self.calls: Counter[JobId] = Counter()
        self.timeouts: list[float | None] = []

    def is_configured(self) -> bool:
        return self.configured

    async def quote(
        self, client: httpx.AsyncClient, requests: Sequence[RemoteRequest], *, timeout: float | None
    ) -> QuoteResult:
        raise AssertionError("not used")

    async def upload_reference(
        self, client: httpx.AsyncClient, name: str, handle: BinaryIO
    ) -> UploadResult:
        raise AssertionError("not used")

    async def generate(
        self, client: httpx.AsyncClient, requests: Sequence[RemoteRequest], *, timeout: float | None
    ) -> GenerateResult:
        raise AssertionError("not used")

    async def resolve_download_url(
        self, client: httpx.AsyncClient, job_id: JobId, *, timeout: float | None
    ) -> DownloadUrlResult:
        self.calls[job_id] += 1
        self.timeouts.append(timeout)
        if job_id in self.failing:
            return DownloadUrlResult(
                status=JobStatus.FAILED,
                error_code=ResultErrorCode.INVALID_JOB_ID,
                messages=("Job not found",),
            )
        if self.hang.get(job_id, 0) > 0:
            self.hang[job_id] -= 1
            await asyncio.sleep(3600)
        return DownloadUrlResult(status=JobStatus.DONE, url=f"https://cdn.test/{job_id}")

    async def fetch_artifact(self, client: httpx.AsyncClient, url: str) -> bytes:
        return url.encode()


class RecordingSink:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def report_message(self, asset: AssetId, text: str) -> None:
        self.messages.append((asset, text))


def _factory(uow: InMemoryUnitOfWork):
    def factory() -> UnitOfWork:
        return uow

    return factory


def _policy() -> RetryPolicy:
    return RetryPolicy(
        max_retries=6, download_timeout=0.2, status_check_timeout=0.05, poll_interval=0
    )


def _job() -> GenerationJob:
    return GenerationJob(job_id=JobId(uuid4()), seed=1)


def _batch(groups: Sequence[JobGroup], *, retryable: bool = True) -> Batch:
    return Batch(
        asset=AssetId("props/crate.png"),
        kind=ArtifactKind.MATERIAL,
        progress_id=ProgressId(1),
        groups=tuple(groups),
        retryable=retryable,
    )


def _engine(
    backend: ScriptedBackend, log: RecoveryLog, sink: RecordingSink | None = None
) -> BatchDownloadEngine:
    return BatchDownloadEngine(backend, TransportLease(), log, _policy(), messages=sink)


def test_failed_group_is_isolated_and_record_emptied() -> None:
    groups = [JobGroup.single("image", JobId(uuid4())) for _ in range(4)]
    backend = ScriptedBackend(failing={groups[2].primary_job.job_id})
    log = RecoveryLog(_factory(InMemoryUnitOfWork()), environment="test")
    sink = RecordingSink()
    batch = _batch(groups)

    async def _run():
        await log.record(batch)
        result = await _engine(backend, log, sink).attempt(batch)
        resolved = [outcome.group for outcome in result.outcomes]
        await log.resolve(batch, resolved)
        return result, await log.count()

    result, remaining_records = asyncio.run(_run())

    assert len(result.fulfilled) == 3
    assert len(result.failed) == 1
    assert result.timed_out == ()
    assert result.remaining.is_empty
    failed = result.failed[0]
    assert isinstance(failed, HardFailed)
    assert failed.error_code is ResultErrorCode.INVALID_JOB_ID
    assert remaining_records == 0
    assert len(sink.messages) == 1
    assert "Job not found" in sink.messages[0][1]


def test_group_with_a_slow_channel_times_out_as_a_whole() -> None:
    first = JobGroup(channels={"albedo": _job(), "normal": _job()})
    slow_normal = _job()
    second = JobGroup(channels={"albedo": _job(), "normal": slow_normal})
    backend = ScriptedBackend(hang={slow_normal.job_id: 1})
    log = RecoveryLog(_factory(InMemoryUnitOfWork()), environment="test")

    result = asyncio.run(_engine(backend, log).attempt(_batch([first, second])))

    assert [outcome.group for outcome in result.fulfilled] == [first]
    assert [outcome.group for outcome in result.timed_out] == [second]
    assert result.remaining.groups == (second,)
    fulfilled = result.fulfilled[0]
    assert set(fulfilled.urls) == {"albedo", "normal"}
    # the sibling that did resolve is cached for the next attempt
    albedo = second.channels["albedo"].job_id
    assert asyncio.run(log.cached_url(albedo)) == f"https://cdn.test/{albedo}"


def test_failed_channel_cancels_its_siblings_without_partial_output() -> None:
    stuck, broken = _job(), _job()
    group = JobGroup(channels={"albedo": stuck, "normal": broken})
    backend = ScriptedBackend(hang={stuck.job_id: 10}, failing={broken.job_id})
    log = RecoveryLog(_factory(InMemoryUnitOfWork()), environment="test")
    sink = RecordingSink()
    healthy = JobGroup.single("albedo", JobId(uuid4()))

    # non-retryable: no deadline, so only the failure can end the stuck channel
    batch = _batch([group, healthy], retryable=False)
    result = asyncio.run(_engine(backend, log, sink).attempt(batch))

    assert [outcome.group for outcome in result.failed] == [group]
    assert [outcome.group for outcome in result.fulfilled] == [healthy]
    assert all(set(o.urls) == set(o.group.channels) for o in result.fulfilled)
    assert len(sink.messages) == 1


def test_deadlines_are_tiered_per_group() -> None:
    groups = [JobGroup.single("image", JobId(uuid4())) for _ in range(3)]
    fresh = [JobGroup.single("image", JobId(uuid4())) for _ in range(2)]
    backend = ScriptedBackend()
    log = RecoveryLog(_factory(InMemoryUnitOfWork()), environment="test")
    engine = _engine(backend, log)

    async def _run() -> tuple[list[float | None], list[float | None], list[float | None]]:
        await engine.attempt(_batch(groups))
        tiered = list(backend.timeouts)
        backend.timeouts.clear()
        # every url now comes from the cache
        await engine.attempt(_batch(groups, retryable=False))
        cached = list(backend.timeouts)
        await engine.attempt(_batch(fresh, retryable=False))
        return tiered, cached, list(backend.timeouts)

    tiered, cached, unbounded = asyncio.run(_run())

    assert sorted(tiered, reverse=True) == [0.2, 0.05, 0.05]
    assert cached == []
    assert unbounded == [None, None]


def test_non_retryable_attempt_never_times_out() -> None:
    slow = _job()
    group = JobGroup(channels={"image": slow})

    class SlowBackend(ScriptedBackend):
        async def resolve_download_url(self, client, job_id, *, timeout):
            await asyncio.sleep(0.3)
            return await super().resolve_download_url(client, job_id, timeout=timeout)

    backend = SlowBackend()
    log = RecoveryLog(_factory(InMemoryUnitOfWork()), environment="test")

    result = asyncio.run(_engine(backend, log).attempt(_batch([group], retryable=False)))

    assert result.timed_out == ()
    assert all(isinstance(outcome, Fulfilled | HardFailed) for outcome in result.outcomes)


def test_non_retryable_timeout_from_backend_is_dropped() -> None:
    job = _job()

    class TimingOutBackend(ScriptedBackend):
        async def resolve_download_url(self, client, job_id, *, timeout):
            raise TimeoutError

    sink = RecordingSink()
    log = RecoveryLog(_factory(InMemoryUnitOfWork()), environment="test")
    engine = _engine(TimingOutBackend(), log, sink)
    batch = _batch([JobGroup(channels={"image": job})], retryable=False)

    with pytest.raises(DownloadAborted):
        asyncio.run(engine.attempt(batch))
    assert len(sink.messages) == 1
    assert "timed out" in sink.messages[0][1]


def test_cached_urls_skip_the_network_after_restart(tmp_path: Path) -> None:
    url = f"sqlite+aiosqlite:///{tmp_path/'cache.db'}"
    group = JobGroup(channels={"albedo": _job(), "normal": _job()})
    batch = _batch([group])

    first_backend = ScriptedBackend()
    first_log = RecoveryLog(create_sqlite_unit_of_work_factory(url), environment="test")
    first = asyncio.run(_engine(first_backend, first_log).attempt(batch))

    second_backend = ScriptedBackend()
    second_log = RecoveryLog(create_sqlite_unit_of_work_factory(url), environment="test")
    second = asyncio.run(_engine(second_backend, second_log).attempt(batch))

    assert sum(first_backend.calls.values()) == 2
    assert sum(second_backend.calls.values()) == 0
    assert first.fulfilled[0].urls == second.fulfilled[0].urls


def test_all_groups_failing_aborts_the_download() -> None:
    groups = [JobGroup.single("image", JobId(uuid4())) for _ in range(2)]
    backend = ScriptedBackend(failing={group.primary_job.job_id for group in groups})
    log = RecoveryLog(_factory(InMemoryUnitOfWork()), environment="test")
    sink = RecordingSink()

    with pytest.raises(DownloadAborted) as excinfo:
        asyncio.run(_engine(backend, log, sink).attempt(_batch(groups)))

    assert excinfo.value.resumable is False
    assert len(sink.messages) == 2


def test_unconfigured_backend_aborts_resumably() -> None:
    backend = ScriptedBackend(configured=False)
    log = RecoveryLog(_factory(InMemoryUnitOfWork()), environment="test")
    sink = RecordingSink()
    batch = _batch([JobGroup.single("image", JobId(uuid4()))])

    with pytest.raises(DownloadAborted) as excinfo:
        asyncio.run(_engine(backend, log, sink).attempt(batch))

    assert excinfo.value.resumable is True
    assert backend.calls == Counter()
    assert "configuration" in sink.messages[0][1]


def test_unexpected_error_after_reported_failure_is_already_handled() -> None:
    group = JobGroup.single("image", JobId(uuid4()))
    healthy = JobGroup.single("image", JobId(uuid4()))
    sink = RecordingSink()

    class ExplodingLog(RecoveryLog):
        async def cache_url(self, job_id, url):
            if job_id == group.primary_job.job_id:
                raise RuntimeError("disk full")
            await super().cache_url(job_id, url)

    log = ExplodingLog(_factory(InMemoryUnitOfWork()), environment="test")
    result = asyncio.run(_engine(ScriptedBackend(), log, sink).attempt(_batch([group, healthy])))

    failed = result.failed[0]
    assert failed.group == group
    assert isinstance(failed, HardFailed | AlreadyHandled)
    assert len(sink.messages) == 1
    assert result.remaining.is_empty
    assert isinstance(result.outcomes[1], Fulfilled)
    assert not isinstance(result.outcomes[0], TimedOut)
