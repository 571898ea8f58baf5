"""Submission of generation requests."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from pathlib import Path

import httpx

from atelier.domain import (
    AssetId,
    Batch,
    GenerationJob,
    GenerationSpec,
    JobGroup,
    ProgressId,
    ResultErrorCode,
    SubmissionAborted,
)
from atelier.providers import (
    ArtifactProfile,
    GeneratedItem,
    GenerateResult,
    GenerationBackend,
    ProfileRegistry,
    ProviderError,
    UnsupportedCombinationError,
    UploadResult,
)
from atelier.recovery import RecoveryLog
from atelier.transport import TransportLease

from .observers import GenerationGate, LoggingObserver, MessageSink, ProgressReporter
from .placeholders import PlaceholderTracker
from .progress import paced_progress
from .requests import build_requests, resolve_seed

INVALID_CONFIGURATION = "Invalid generator configuration. Please check the API settings."


def _item_channels(profile: ArtifactProfile, item: GeneratedItem) -> list[str]:
    ordered = [channel for channel in profile.channels if channel in item.jobs]
    ordered.extend(channel for channel in item.jobs if channel not in profile.channels)
    return ordered


class JobSubmitter:
    """Turns a generation spec into a recorded batch of remote jobs."""

    def __init__(
        self,
        backend: GenerationBackend,
        lease: TransportLease,
        profiles: ProfileRegistry,
        recovery_log: RecoveryLog,
        placeholders: PlaceholderTracker,
        *,
        gate: GenerationGate | None = None,
        progress: ProgressReporter | None = None,
        messages: MessageSink | None = None,
        generate_timeout: float | None = 45.0,
        logger: logging.Logger | None = None,
    ) -> None:
        default_observer = LoggingObserver()
        self._backend = backend
        self._lease = lease
        self._profiles = profiles
        self._recovery_log = recovery_log
        self._placeholders = placeholders
        self._gate = gate or default_observer
        self._progress = progress or default_observer
        self._messages = messages or default_observer
        self._generate_timeout = generate_timeout
        self._logger = logger or logging.getLogger(__name__)

    async def submit(
        self,
        asset: AssetId,
        spec: GenerationSpec,
        progress_id: ProgressId,
    ) -> Batch | SubmissionAborted:
        """Submit ``spec`` for ``asset``; the batch is recorded before it is returned."""

        self._gate.set_generation_allowed(asset, False)
        try:
            return await self._submit(asset, spec, progress_id)
        except asyncio.CancelledError:
            self._placeholders.remove(asset, progress_id)
            raise
        except Exception as exc:
            self._logger.exception("Submission for %s failed", asset)
            return self._abort(asset, progress_id, f"Generation failed: {exc}")
        finally:
            self._gate.set_generation_allowed(asset, True)

    async def _submit(
        self,
        asset: AssetId,
        spec: GenerationSpec,
        progress_id: ProgressId,
    ) -> Batch | SubmissionAborted:
        try:
            profile = self._profiles.require(spec)
        except UnsupportedCombinationError as exc:
            return self._abort(asset, progress_id, str(exc), exc.error_code)
        if not self._backend.is_configured():
            code = ResultErrorCode.TOKEN_INVALID
            return self._abort(asset, progress_id, INVALID_CONFIGURATION, code)

        variations = profile.effective_variations(spec)
        self._placeholders.set(asset, progress_id, variations)
        self._progress.report_progress(progress_id, 0.0, "Authenticating")
        self._progress.report_progress(progress_id, 0.01, "Preparing request")
        seed = resolve_seed(spec, variations)

        async with self._lease.lease() as client:
            references = await self._upload_references(client, asset, spec, progress_id)
            if isinstance(references, SubmissionAborted):
                return references
            requests = build_requests(profile, spec, seed=seed, references=references)
            async with paced_progress(self._progress, progress_id, 0.15, 0.25, "Sending request"):
                result = await self._backend.generate(
                    client, requests, timeout=self._generate_timeout
                )

        if not result.successful:
            text = "; ".join(result.messages) or f"Generation request failed ({result.error_code})"
            self._messages.report_message(asset, text)
            return self._abort(asset, progress_id, text, result.error_code, report=False)

        groups, points = self._collect_groups(asset, profile, result)
        if not groups:
            reason = f"None of the {len(requests)} requested generations was accepted"
            return self._abort(asset, progress_id, reason, ResultErrorCode.UNKNOWN)

        metadata = spec.metadata().with_trace_id(result.trace_id)
        metadata = metadata.model_copy(update={"custom_seed": seed, "points_cost": points})
        batch = Batch(
            asset=asset,
            kind=spec.kind,
            progress_id=progress_id,
            groups=tuple(groups),
            metadata=metadata,
            auto_apply=spec.auto_apply,
        )
        self._logger.info(
            "Generation for %s accepted %d of %d requests, consuming %d points",
            asset,
            len(groups),
            len(requests),
            points,
        )
        await self._recovery_log.record(batch)
        self._progress.report_progress(progress_id, 0.25, "Waiting for results")
        return batch

    def _collect_groups(
        self,
        asset: AssetId,
        profile: ArtifactProfile,
        result: GenerateResult,
    ) -> tuple[list[JobGroup], int]:
        groups: list[JobGroup] = []
        points = 0
        batch_reported = False
        for index, item in enumerate(result.items):
            channels = _item_channels(profile, item) if item.successful else []
            if not channels:
                if not batch_reported:
                    failed = sum(1 for i in result.items if not i.successful or not i.jobs)
                    self._messages.report_message(
                        asset, f"{failed} of {len(result.items)} generations were rejected"
                    )
                    batch_reported = True
                details = "; ".join(item.messages) or str(item.error_code)
                self._logger.warning(
                    "Generation item %d for %s rejected: %s", index, asset, details
                )
                self._messages.report_message(asset, f"Generation {index + 1} failed: {details}")
                continue
            jobs = {
                channel: GenerationJob(job_id=item.jobs[channel], seed=item.seed)
                for channel in channels
            }
            groups.append(JobGroup(channels=jobs))
            points += item.points_cost
        return groups, points

    async def _upload_references(
        self,
        client: httpx.AsyncClient,
        asset: AssetId,
        spec: GenerationSpec,
        progress_id: ProgressId,
    ) -> dict[str, str] | SubmissionAborted:
        if not spec.references:
            return {}
        tasks: dict[str, asyncio.Task[UploadResult]] = {}
        try:
            async with AsyncExitStack() as stack, paced_progress(
                self._progress, progress_id, 0.02, 0.15, "Uploading references"
            ):
                try:
                    # start every upload before awaiting any of them
                    for name, path in spec.references.items():
                        handle = stack.enter_context(Path(path).open("rb"))
                        tasks[name] = asyncio.create_task(
                            self._backend.upload_reference(client, Path(path).name, handle)
                        )
                    results = await asyncio.gather(*tasks.values())
                finally:
                    for task in tasks.values():
                        task.cancel()
                    await asyncio.gather(*tasks.values(), return_exceptions=True)
        except (OSError, ProviderError, httpx.HTTPError) as exc:
            # leaving the progress window by exception skips its end report
            self._logger.warning("Reference upload for %s failed: %s", asset, exc)
            reason = f"Uploading references failed: {exc}"
            return self._abort(asset, progress_id, reason, ResultErrorCode.UNKNOWN)
        return {name: result.reference_id for name, result in zip(tasks, results)}

    def _abort(
        self,
        asset: AssetId,
        progress_id: ProgressId,
        reason: str,
        error_code: ResultErrorCode = ResultErrorCode.UNKNOWN,
        *,
        report: bool = True,
    ) -> SubmissionAborted:
        if report:
            self._messages.report_message(asset, reason)
        self._placeholders.remove(asset, progress_id)
        return SubmissionAborted(asset=asset, reason=reason, error_code=error_code)


__all__ = ["JobSubmitter"]
