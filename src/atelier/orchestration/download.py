"""Single download attempt over a batch of job groups."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass

import httpx

from atelier.domain import (
    AlreadyHandled,
    AttemptResult,
    Batch,
    DownloadOutcome,
    Fulfilled,
    GenerationJob,
    GroupKey,
    HardFailed,
    JobGroup,
    JobId,
    JobStatus,
    ResultErrorCode,
    TimedOut,
)
from atelier.providers import DownloadUrlResult, GenerationBackend, ProviderError
from atelier.recovery import RecoveryLog
from atelier.transport import TransportLease

from .exceptions import DownloadAborted
from .observers import LoggingObserver, MessageSink
from .policy import RetryPolicy

INVALID_CONFIGURATION = "Invalid generator configuration. Please check the API settings."


@dataclass(frozen=True, slots=True)
class _ChannelTimeout:
    job_id: JobId


@dataclass(frozen=True, slots=True)
class _ChannelFailure:
    job_id: JobId
    result: DownloadUrlResult


_ChannelOutcome = str | _ChannelTimeout


class _GroupFailed(Exception):
    """Raised by a channel to cancel the rest of its group."""

    def __init__(self, failure: _ChannelFailure) -> None:
        super().__init__(failure.job_id)
        self.failure = failure


class _AttemptState:
    """Failure bookkeeping shared by the groups of one attempt."""

    def __init__(self, batch: Batch, messages: MessageSink) -> None:
        self.batch = batch
        self._messages = messages
        self._reported: set[GroupKey] = set()

    def was_reported(self, group: JobGroup) -> bool:
        return group.key in self._reported

    def report_once(self, group: JobGroup, text: str) -> bool:
        if group.key in self._reported:
            return False
        self._reported.add(group.key)
        self._messages.report_message(self.batch.asset, text)
        return True


def _describe_failure(failure: _ChannelFailure) -> str:
    details = "; ".join(failure.result.messages) or str(failure.result.error_code)
    return f"Download failed for job {failure.job_id}: {details}"


class BatchDownloadEngine:
    """Performs one download attempt, classifying every group independently.

    Groups run concurrently. Within a group all uncached channels are resolved
    together under one deadline, and the group succeeds, fails or times out as a
    whole. Each resolved URL is cached in the recovery log immediately.
    """

    def __init__(
        self,
        backend: GenerationBackend,
        lease: TransportLease,
        recovery_log: RecoveryLog,
        policy: RetryPolicy,
        *,
        messages: MessageSink | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._backend = backend
        self._lease = lease
        self._recovery_log = recovery_log
        self._policy = policy
        self._messages = messages or LoggingObserver()
        self._logger = logger or logging.getLogger(__name__)

    async def attempt(self, batch: Batch) -> AttemptResult:
        if not self._backend.is_configured():
            self._messages.report_message(batch.asset, INVALID_CONFIGURATION)
            raise DownloadAborted(batch.batch_id, "backend is not configured", resumable=True)
        async with self._lease.lease() as client:
            return await self.attempt_with_client(client, batch)

    async def attempt_with_client(self, client: httpx.AsyncClient, batch: Batch) -> AttemptResult:
        """Run the attempt on an already leased client."""

        if batch.is_empty:
            return AttemptResult(outcomes=(), remaining=batch)
        state = _AttemptState(batch, self._messages)
        cached = await self._recovery_log.cached_urls(batch.job_ids)

        coroutines = []
        position = 0
        for group in batch.groups:
            if all(job_id in cached for job_id in group.job_ids):
                coroutines.append(self._process_group(client, state, group, cached, None))
                continue
            deadline = self._policy.group_deadline(position, retryable=batch.retryable)
            position += 1
            coroutines.append(self._process_group(client, state, group, cached, deadline))
        outcomes: tuple[DownloadOutcome, ...] = tuple(await asyncio.gather(*coroutines))

        timed_out = [outcome.group.key for outcome in outcomes if isinstance(outcome, TimedOut)]
        result = AttemptResult(outcomes=outcomes, remaining=batch.restricted_to(timed_out))
        self._logger.info(
            "Attempt on batch %s: %d fulfilled, %d timed out, %d dropped",
            batch.batch_id,
            len(result.fulfilled),
            len(result.timed_out),
            len(result.failed),
        )
        if not result.fulfilled and not result.timed_out:
            raise DownloadAborted(
                batch.batch_id, f"all {len(outcomes)} groups failed", failed=result.failed
            )
        return result

    async def _process_group(
        self,
        client: httpx.AsyncClient,
        state: _AttemptState,
        group: JobGroup,
        cached: Mapping[JobId, str],
        deadline: float | None,
    ) -> DownloadOutcome:
        try:
            return await self._resolve_group(client, state, group, cached, deadline)
        except Exception:
            self._logger.exception("Unexpected failure downloading group %s", group.key)
            if state.was_reported(group):
                return AlreadyHandled(group)
            reason = f"Unexpected error while downloading job {group.primary_job.job_id}"
            state.report_once(group, reason)
            return HardFailed(group, reason)

    async def _resolve_group(
        self,
        client: httpx.AsyncClient,
        state: _AttemptState,
        group: JobGroup,
        cached: Mapping[JobId, str],
        deadline: float | None,
    ) -> DownloadOutcome:
        urls: dict[str, _ChannelOutcome] = {
            channel: cached[job.job_id]
            for channel, job in group.channels.items()
            if job.job_id in cached
        }
        missing = {channel: job for channel, job in group.channels.items() if channel not in urls}
        failure: _ChannelFailure | None = None
        if missing:
            try:
                async with asyncio.timeout(deadline):
                    try:
                        async with asyncio.TaskGroup() as tasks:
                            pending = {
                                channel: tasks.create_task(
                                    self._resolve_channel(client, state, group, job, deadline)
                                )
                                for channel, job in missing.items()
                            }
                    except* _GroupFailed as failed:
                        failure = failed.exceptions[0].failure  # type: ignore[attr-defined]
            except TimeoutError:
                return self._on_timeout(state, group)
            if failure is None:
                urls.update({channel: task.result() for channel, task in pending.items()})

        if failure is not None:
            return HardFailed(group, _describe_failure(failure), failure.result.error_code)
        if any(isinstance(value, _ChannelTimeout) for value in urls.values()):
            return self._on_timeout(state, group)
        return Fulfilled(group, {channel: str(urls[channel]) for channel in group.channels})

    def _on_timeout(self, state: _AttemptState, group: JobGroup) -> DownloadOutcome:
        if state.batch.retryable:
            self._logger.debug("Group %s timed out, deferring", group.key)
            return TimedOut(group)
        self._logger.error(
            "Non-retryable download of job %s timed out, dropping it", group.primary_job.job_id
        )
        reason = f"Download of job {group.primary_job.job_id} timed out"
        state.report_once(group, reason)
        return HardFailed(group, reason, ResultErrorCode.SDK_TIMEOUT)

    async def _resolve_channel(
        self,
        client: httpx.AsyncClient,
        state: _AttemptState,
        group: JobGroup,
        job: GenerationJob,
        deadline: float | None,
    ) -> _ChannelOutcome:
        while True:
            try:
                result = await self._backend.resolve_download_url(
                    client, job.job_id, timeout=deadline
                )
            except TimeoutError:
                return _ChannelTimeout(job.job_id)
            except ProviderError as exc:
                result = DownloadUrlResult(
                    status=JobStatus.FAILED, error_code=exc.error_code, messages=(str(exc),)
                )
            except httpx.HTTPError as exc:
                result = DownloadUrlResult(status=JobStatus.FAILED, messages=(str(exc),))

            if result.ready and result.url is not None:
                await self._recovery_log.cache_url(job.job_id, result.url)
                return result.url
            if result.failed:
                failure = _ChannelFailure(job.job_id, result)
                state.report_once(group, _describe_failure(failure))
                raise _GroupFailed(failure)
            await asyncio.sleep(self._policy.poll_interval)


__all__ = ["BatchDownloadEngine"]
