from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import BinaryIO
from uuid import uuid4

import httpx
import pytest

from atelier.domain import (
    ArtifactKind,
    AssetId,
    AttemptResult,
    Batch,
    BatchStatus,
    JobGroup,
    JobId,
    JobStatus,
    ProgressId,
    ResultErrorCode,
    TimedOut,
)
from atelier.orchestration import (
    ArtifactStore,
    BatchDownloadEngine,
    FileMaterializer,
    InternalInvariantViolation,
    PlaceholderTracker,
    RetryController,
    RetryPolicy,
)
from atelier.persistence import InMemoryUnitOfWork, UnitOfWork
from atelier.providers import (
    DownloadUrlResult,
    GenerateResult,
    QuoteResult,
    RemoteRequest,
    ResponseError,
    UploadResult,
    default_registry,
)
from atelier.recovery import RecoveryLog
from atelier.transport import TransportLease

ASSET = AssetId("props/crate.png")


class StubBackend:
    environment = "test"

    def __init__(
        self,
        *,
        hang: dict[JobId, int] | None = None,
        failing: set[JobId] | None = None,
        unfetchable: set[JobId] | None = None,
        configured: bool = True,
    ) -> None:
        self.hang = dict(hang or {})
        self.failing = set(failing or ())
        self.unfetchable = {f"https://cdn.test/{job_id}" for job_id in unfetchable or ()}
        self.configured = configured

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
        if self.hang.get(job_id, 0) > 0:
            self.hang[job_id] -= 1
            await asyncio.sleep(3600)
        if job_id in self.failing:
            return DownloadUrlResult(
                status=JobStatus.FAILED,
                error_code=ResultErrorCode.INVALID_JOB_ID,
                messages=("Job not found",),
            )
        return DownloadUrlResult(status=JobStatus.DONE, url=f"https://cdn.test/{job_id}")

    async def fetch_artifact(self, client: httpx.AsyncClient, url: str) -> bytes:
        if url in self.unfetchable:
            raise ResponseError(f"gone: {url}")
        return url.encode()


class RecordingEngine(BatchDownloadEngine):
    """Keeps every attempt's input and result."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.attempts: list[tuple[Batch, AttemptResult]] = []

    async def attempt(self, batch: Batch) -> AttemptResult:
        result = await super().attempt(batch)
        self.attempts.append((batch, result))
        return result


class RecordingSink:
    def __init__(self) -> None:
        self.messages: list[str] = []

    def report_message(self, asset: AssetId, text: str) -> None:
        self.messages.append(text)


def _factory(uow: InMemoryUnitOfWork):
    def factory() -> UnitOfWork:
        return uow

    return factory


def _batch(count: int) -> Batch:
    return Batch(
        asset=ASSET,
        kind=ArtifactKind.IMAGE,
        progress_id=ProgressId(5),
        groups=tuple(JobGroup.single("image", JobId(uuid4()), seed=i) for i in range(count)),
    )


class Harness:
    def __init__(self, tmp_path: Path, backend: StubBackend, *, max_retries: int = 6) -> None:
        self.log = RecoveryLog(_factory(InMemoryUnitOfWork()), environment="test")
        self.placeholders = PlaceholderTracker()
        self.sink = RecordingSink()
        self.workspace = tmp_path / "workspace"
        policy = RetryPolicy(
            max_retries=max_retries,
            download_timeout=0.05,
            status_check_timeout=0.02,
            poll_interval=0,
        )
        lease = TransportLease()
        registry = default_registry()
        self.engine = RecordingEngine(backend, lease, self.log, policy, messages=self.sink)
        self.controller = RetryController(
            self.engine,
            self.log,
            ArtifactStore(tmp_path / "artifacts", backend, registry),
            self.placeholders,
            lease,
            policy,
            registry,
            materializer=FileMaterializer(self.workspace),
            messages=self.sink,
        )

    async def start(self, batch: Batch) -> None:
        await self.log.record(batch)
        self.placeholders.set(batch.asset, batch.progress_id, len(batch.groups))


def test_last_attempt_resolves_what_earlier_attempts_deferred(tmp_path: Path) -> None:
    batch = _batch(3)
    stubborn = batch.groups[1].primary_job.job_id
    harness = Harness(tmp_path, StubBackend(hang={stubborn: 6}))

    async def _run():
        await harness.start(batch)
        return await harness.controller.execute(batch), await harness.log.count()

    report, records_left = asyncio.run(_run())

    assert report.status is BatchStatus.DONE
    assert report.attempts == 7
    assert len(report.artifacts) == 3
    assert records_left == 0
    assert harness.placeholders.pending(ASSET) == ()

    pending_sizes = [len(attempted.groups) for attempted, _ in harness.engine.attempts]
    assert pending_sizes == [3, 1, 1, 1, 1, 1, 1]
    last_batch, last_result = harness.engine.attempts[-1]
    assert last_batch.retryable is False
    assert last_result.timed_out == ()
    assert [o.group for o in last_result.fulfilled] == [batch.groups[1]]


def test_pending_groups_never_grow_between_attempts(tmp_path: Path) -> None:
    batch = _batch(4)
    backend = StubBackend(
        hang={batch.groups[0].primary_job.job_id: 2, batch.groups[1].primary_job.job_id: 1},
        failing={batch.groups[3].primary_job.job_id},
    )
    harness = Harness(tmp_path, backend)

    async def _run():
        await harness.start(batch)
        return await harness.controller.execute(batch)

    report = asyncio.run(_run())

    previous = batch.group_keys
    resolved: set = set()
    for attempted, result in harness.engine.attempts:
        assert attempted.group_keys <= previous
        assert not attempted.group_keys & resolved
        resolved |= {o.group.key for o in result.fulfilled + result.failed}
        previous = attempted.group_keys
    assert report.status is BatchStatus.DONE
    assert len(report.artifacts) == 3
    assert len(report.dropped) == 1
    failed_job = batch.groups[3].primary_job.job_id
    assert harness.sink.messages == [f"Download failed for job {failed_job}: Job not found"]


def test_first_artifact_applied_to_blank_asset(tmp_path: Path) -> None:
    batch = _batch(2)
    harness = Harness(tmp_path, StubBackend())

    async def _run():
        await harness.start(batch)
        return await harness.controller.execute(batch)

    report = asyncio.run(_run())

    target = harness.workspace / ASSET
    assert report.applied is True
    assert target.read_bytes() == report.artifacts[0].primary_path.read_bytes()
    metadata = report.artifacts[0].primary_path.parent / "metadata.json"
    assert metadata.exists()
    assert '"custom_seed"' in metadata.read_text(encoding="utf-8")


def test_existing_asset_is_backed_up_not_replaced(tmp_path: Path) -> None:
    batch = _batch(1)
    harness = Harness(tmp_path, StubBackend())
    target = harness.workspace / ASSET
    target.parent.mkdir(parents=True)
    target.write_bytes(b"original")

    async def _run():
        await harness.start(batch)
        return await harness.controller.execute(batch)

    report = asyncio.run(_run())

    assert report.applied is False
    assert target.read_bytes() == b"original"
    assert target.with_name(target.name + ".bak").read_bytes() == b"original"


def test_store_failure_drops_group_with_message(tmp_path: Path) -> None:
    batch = _batch(2)
    lost = batch.groups[0].primary_job.job_id
    harness = Harness(tmp_path, StubBackend(unfetchable={lost}))

    async def _run():
        await harness.start(batch)
        return await harness.controller.execute(batch), await harness.log.count()

    report, records_left = asyncio.run(_run())

    assert [artifact.group for artifact in report.artifacts] == [batch.groups[1]]
    assert [outcome.group for outcome in report.dropped] == [batch.groups[0]]
    assert any(str(lost) in message for message in harness.sink.messages)
    assert records_left == 0


def test_all_groups_failing_ends_failed_and_forgets_batch(tmp_path: Path) -> None:
    batch = _batch(2)
    backend = StubBackend(failing={group.primary_job.job_id for group in batch.groups})
    harness = Harness(tmp_path, backend)

    async def _run():
        await harness.start(batch)
        return await harness.controller.execute(batch), await harness.log.count()

    report, records_left = asyncio.run(_run())

    assert report.status is BatchStatus.FAILED
    assert report.artifacts == []
    assert records_left == 0
    assert len(harness.sink.messages) == 2
    assert sorted(o.group.key for o in report.dropped) == sorted(batch.group_keys)
    assert harness.placeholders.pending(ASSET) == ()


def test_groups_failing_on_a_later_attempt_are_reported_dropped(tmp_path: Path) -> None:
    batch = _batch(2)
    late = batch.groups[1].primary_job.job_id
    harness = Harness(tmp_path, StubBackend(hang={late: 1}, failing={late}))

    async def _run():
        await harness.start(batch)
        return await harness.controller.execute(batch), await harness.log.count()

    report, records_left = asyncio.run(_run())

    assert report.status is BatchStatus.DONE
    assert report.attempts == 2
    assert [artifact.group for artifact in report.artifacts] == [batch.groups[0]]
    assert [outcome.group for outcome in report.dropped] == [batch.groups[1]]
    assert harness.sink.messages == [f"Download failed for job {late}: Job not found"]
    assert records_left == 0


def test_unconfigured_backend_keeps_batch_for_later(tmp_path: Path) -> None:
    batch = _batch(2)
    harness = Harness(tmp_path, StubBackend(configured=False))

    async def _run():
        await harness.start(batch)
        return await harness.controller.execute(batch), await harness.log.count()

    report, records_left = asyncio.run(_run())

    assert report.status is BatchStatus.FAILED
    assert records_left == 1
    assert harness.placeholders.pending(ASSET) == ()


class TimingOutEngine:
    """Reports every group as timed out, even on the final attempt."""

    async def attempt(self, batch: Batch) -> AttemptResult:
        return AttemptResult(outcomes=tuple(TimedOut(g) for g in batch.groups), remaining=batch)


class ReadmittingEngine:
    """Defers one group, then hands back the whole original batch."""

    def __init__(self, original: Batch) -> None:
        self.original = original
        self.calls = 0

    async def attempt(self, batch: Batch) -> AttemptResult:
        self.calls += 1
        first = batch.groups[0]
        if self.calls == 1:
            remaining = batch.restricted_to([first.key])
            return AttemptResult(outcomes=(TimedOut(first),), remaining=remaining)
        return AttemptResult(outcomes=(TimedOut(first),), remaining=self.original)


def _controller_with(engine, tmp_path: Path, log: RecoveryLog, placeholders: PlaceholderTracker):
    backend = StubBackend()
    registry = default_registry()
    lease = TransportLease()
    return RetryController(
        engine,
        log,
        ArtifactStore(tmp_path, backend, registry),
        placeholders,
        lease,
        RetryPolicy(max_retries=1, poll_interval=0),
        registry,
    )


def test_timeout_on_final_attempt_is_an_invariant_violation(tmp_path: Path) -> None:
    batch = _batch(1)
    log = RecoveryLog(_factory(InMemoryUnitOfWork()), environment="test")
    placeholders = PlaceholderTracker()
    controller = _controller_with(TimingOutEngine(), tmp_path, log, placeholders)

    async def _run() -> int:
        await log.record(batch)
        placeholders.set(batch.asset, batch.progress_id, 1)
        with pytest.raises(InternalInvariantViolation):
            await controller.execute(batch)
        return await log.count()

    assert asyncio.run(_run()) == 1
    assert placeholders.pending(ASSET) == ()


def test_readmitted_group_is_an_invariant_violation(tmp_path: Path) -> None:
    batch = _batch(2)
    log = RecoveryLog(_factory(InMemoryUnitOfWork()), environment="test")
    controller = _controller_with(ReadmittingEngine(batch), tmp_path, log, PlaceholderTracker())

    async def _run() -> None:
        await controller.execute(batch)

    with pytest.raises(InternalInvariantViolation):
        asyncio.run(_run())


def test_cancellation_keeps_batch_resumable(tmp_path: Path) -> None:
    batch = _batch(1)
    stuck = batch.groups[0].primary_job.job_id
    harness = Harness(tmp_path, StubBackend(hang={stuck: 100}), max_retries=0)

    async def _run() -> int:
        await harness.start(batch)
        task = asyncio.create_task(harness.controller.execute(batch))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return await harness.log.count()

    assert asyncio.run(_run()) == 1
    assert harness.placeholders.pending(ASSET) == ()
