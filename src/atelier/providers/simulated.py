"""Local generation backend used when no remote credentials are configured."""

from __future__ import annotations

import asyncio
import json
import random
from collections.abc import Sequence
from dataclasses import dataclass
from typing import BinaryIO
from uuid import UUID, uuid4

import httpx

from atelier.domain import JobId, JobStatus, ResultErrorCode
from atelier.utils.time import monotonic

from .base import GenerationBackend
from .exceptions import ResponseError
from .models import (
    DownloadUrlResult,
    GeneratedItem,
    GenerateResult,
    QuoteResult,
    RemoteRequest,
    UploadResult,
)

SIMULATED_SCHEME = "sim://"


@dataclass(slots=True)
class _SimulatedJob:
    channel: str
    seed: int | None
    ready_at: float


class SimulatedGenerationBackend(GenerationBackend):
    """Echoes requests into synthetic artifacts after a configurable latency.

    Prompts containing ``fail_marker`` are rejected per item, which exercises the
    partial-failure paths without a remote service. Jobs this instance never issued
    (for example after a restart) are treated as finished.
    """

    def __init__(
        self,
        *,
        environment: str = "local",
        latency: float = 0.0,
        points_per_request: int = 10,
        fail_marker: str = "[fail]",
    ) -> None:
        self.environment = environment
        self._latency = latency
        self._points_per_request = points_per_request
        self._fail_marker = fail_marker
        self._jobs: dict[JobId, _SimulatedJob] = {}
        self._uploads: dict[str, int] = {}

    def is_configured(self) -> bool:
        return True

    async def quote(
        self,
        client: httpx.AsyncClient,
        requests: Sequence[RemoteRequest],
        *,
        timeout: float | None,
    ) -> QuoteResult:
        await asyncio.sleep(0)
        if not requests:
            return QuoteResult(
                successful=False,
                error_code=ResultErrorCode.SERVER_VALIDATION_FAILED,
                messages=("At least one request is required",),
            )
        return QuoteResult(successful=True, points_cost=self._points_per_request * len(requests))

    async def upload_reference(
        self,
        client: httpx.AsyncClient,
        name: str,
        handle: BinaryIO,
    ) -> UploadResult:
        data = handle.read()
        await asyncio.sleep(0)
        reference_id = f"sim-ref-{uuid4().hex[:12]}"
        self._uploads[reference_id] = len(data)
        return UploadResult(reference_id=reference_id)

    async def generate(
        self,
        client: httpx.AsyncClient,
        requests: Sequence[RemoteRequest],
        *,
        timeout: float | None,
    ) -> GenerateResult:
        await asyncio.sleep(0)
        items: list[GeneratedItem] = []
        ready_at = monotonic() + self._latency
        for request in requests:
            if self._fail_marker and self._fail_marker in request.prompt:
                items.append(
                    GeneratedItem(
                        successful=False,
                        error_code=ResultErrorCode.SERVER_VALIDATION_FAILED,
                        messages=(f"Prompt rejected by simulated backend: {request.prompt}",),
                    )
                )
                continue
            seed = request.seed if request.seed is not None else random.randint(0, 2**31 - 1)
            jobs: dict[str, JobId] = {}
            for channel in request.channels:
                job_id = JobId(uuid4())
                self._jobs[job_id] = _SimulatedJob(channel=channel, seed=seed, ready_at=ready_at)
                jobs[channel] = job_id
            items.append(
                GeneratedItem(
                    successful=True,
                    jobs=jobs,
                    seed=seed,
                    points_cost=self._points_per_request,
                )
            )
        return GenerateResult(successful=True, items=items, trace_id=f"sim-{uuid4().hex[:8]}")

    async def resolve_download_url(
        self,
        client: httpx.AsyncClient,
        job_id: JobId,
        *,
        timeout: float | None,
    ) -> DownloadUrlResult:
        job = self._jobs.get(job_id)
        if job is not None:
            remaining = job.ready_at - monotonic()
            if remaining > 0:
                # long-poll like the remote service, bounded by the caller's budget
                wait = remaining if timeout is None else min(remaining, timeout)
                await asyncio.sleep(wait)
                if job.ready_at > monotonic():
                    return DownloadUrlResult(status=JobStatus.WORKING)
        return DownloadUrlResult(status=JobStatus.DONE, url=f"{SIMULATED_SCHEME}{job_id}")

    async def fetch_artifact(self, client: httpx.AsyncClient, url: str) -> bytes:
        if not url.startswith(SIMULATED_SCHEME):
            raise ResponseError(f"Simulated backend cannot fetch {url}")
        job_id = url[len(SIMULATED_SCHEME) :]
        try:
            job = self._jobs.get(JobId(UUID(job_id)))
        except ValueError as exc:
            raise ResponseError(f"Malformed simulated artifact url {url}") from exc
        await asyncio.sleep(0)
        document = {
            "job_id": job_id,
            "channel": job.channel if job else None,
            "seed": job.seed if job else None,
        }
        return json.dumps(document).encode("utf-8")


__all__ = ["SIMULATED_SCHEME", "SimulatedGenerationBackend"]
