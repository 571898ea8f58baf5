"""Generation backend speaking JSON over HTTP."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, BinaryIO
from uuid import UUID

import httpx

from atelier.domain import JobId, JobStatus, ResultErrorCode

from .base import GenerationBackend
from .exceptions import BackendNotConfiguredError, RemoteTimeoutError, ResponseError
from .models import (
    DownloadUrlResult,
    GeneratedItem,
    GenerateResult,
    QuoteResult,
    RemoteRequest,
    UploadResult,
)

_QUOTE_ENDPOINT = "/v1/generations/quote"
_GENERATE_ENDPOINT = "/v1/generations"
_ASSETS_ENDPOINT = "/v1/assets"
_JOBS_ENDPOINT = "/v1/jobs"

_STATUS_ERRORS = {
    401: ResultErrorCode.TOKEN_INVALID,
    402: ResultErrorCode.INSUFFICIENT_FUNDS,
    403: ResultErrorCode.USER_UNAUTHORIZED,
    404: ResultErrorCode.INVALID_JOB_ID,
    408: ResultErrorCode.SERVER_TIMEOUT,
    410: ResultErrorCode.API_NO_LONGER_SUPPORTED,
    422: ResultErrorCode.SERVER_VALIDATION_FAILED,
    429: ResultErrorCode.RATE_LIMIT_EXCEEDED,
    451: ResultErrorCode.UNAVAILABLE_FOR_LEGAL_REASONS,
}

logger = logging.getLogger(__name__)


def _messages(data: Mapping[str, Any]) -> tuple[str, ...]:
    raw = data.get("messages") or ()
    if not isinstance(raw, list | tuple):
        return (str(raw),)
    return tuple(str(message) for message in raw)


def _json_body(response: httpx.Response) -> Mapping[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        msg = f"Unreadable response from {response.request.url.path} (HTTP {response.status_code})"
        raise ResponseError(msg) from exc
    if not isinstance(data, Mapping):
        raise ResponseError(f"Expected a JSON object from {response.request.url.path}")
    return data


def _error_code(data: Mapping[str, Any], default: ResultErrorCode) -> ResultErrorCode:
    if "error" not in data:
        return default
    return ResultErrorCode.parse(data.get("error"))


class HttpGenerationBackend(GenerationBackend):
    """Talks to the remote generation service over the leased ``httpx`` client."""

    def __init__(self, *, api_key: str | None, environment: str) -> None:
        self._api_key = api_key
        self.environment = environment

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _headers(self) -> Mapping[str, str]:
        if not self._api_key:
            msg = "An API key is required to reach the generation service"
            raise BackendNotConfiguredError(msg)
        return {"Authorization": f"Bearer {self._api_key}"}

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        *,
        timeout: float | None,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            return await client.request(
                method,
                url,
                headers=self._headers(),
                timeout=httpx.Timeout(timeout),
                **kwargs,
            )
        except httpx.TimeoutException as exc:
            raise RemoteTimeoutError(f"{method} {url} timed out") from exc

    @staticmethod
    def _failure(response: httpx.Response) -> tuple[ResultErrorCode, tuple[str, ...]]:
        default = _STATUS_ERRORS.get(response.status_code, ResultErrorCode.UNKNOWN)
        try:
            data = response.json()
        except ValueError:
            return default, ((response.text,) if response.text else ())
        if not isinstance(data, Mapping):
            return default, ()
        return _error_code(data, default), _messages(data)

    async def quote(
        self,
        client: httpx.AsyncClient,
        requests: Sequence[RemoteRequest],
        *,
        timeout: float | None,
    ) -> QuoteResult:
        body = {"requests": [request.to_payload() for request in requests]}
        response = await self._send(client, "POST", _QUOTE_ENDPOINT, timeout=timeout, json=body)
        if response.is_error:
            code, messages = self._failure(response)
            return QuoteResult(successful=False, error_code=code, messages=messages)
        data = _json_body(response)
        if not data.get("success", True):
            return QuoteResult(
                successful=False,
                error_code=_error_code(data, ResultErrorCode.UNKNOWN),
                messages=_messages(data),
            )
        try:
            points_cost = int(data.get("points_cost", 0))
        except (TypeError, ValueError) as exc:
            raise ResponseError(f"Malformed points cost: {data.get('points_cost')!r}") from exc
        return QuoteResult(successful=True, points_cost=points_cost)

    async def upload_reference(
        self,
        client: httpx.AsyncClient,
        name: str,
        handle: BinaryIO,
    ) -> UploadResult:
        files = {"file": (name, handle, "application/octet-stream")}
        response = await self._send(client, "POST", _ASSETS_ENDPOINT, timeout=None, files=files)
        response.raise_for_status()
        reference_id = _json_body(response).get("id")
        if not reference_id:
            raise ResponseError("Asset upload response missing id")
        return UploadResult(reference_id=str(reference_id))

    async def generate(
        self,
        client: httpx.AsyncClient,
        requests: Sequence[RemoteRequest],
        *,
        timeout: float | None,
    ) -> GenerateResult:
        body = {"requests": [request.to_payload() for request in requests]}
        response = await self._send(client, "POST", _GENERATE_ENDPOINT, timeout=timeout, json=body)
        if response.is_error:
            code, messages = self._failure(response)
            return GenerateResult(successful=False, error_code=code, messages=messages)
        data = _json_body(response)
        trace_id = data.get("trace_id")
        if not data.get("success", True):
            return GenerateResult(
                successful=False,
                error_code=_error_code(data, ResultErrorCode.UNKNOWN),
                messages=_messages(data),
                trace_id=trace_id,
            )
        raw_items = data.get("items") or []
        if not isinstance(raw_items, list):
            raise ResponseError(f"Malformed generation items: {raw_items!r}")
        items = [self._parse_item(item) for item in raw_items]
        return GenerateResult(successful=True, items=items, trace_id=trace_id)

    @staticmethod
    def _parse_item(item: Mapping[str, Any]) -> GeneratedItem:
        if not isinstance(item, Mapping):
            raise ResponseError(f"Malformed generation item: {item!r}")
        if not item.get("success", True):
            return GeneratedItem(
                successful=False,
                error_code=_error_code(item, ResultErrorCode.UNKNOWN),
                messages=_messages(item),
            )
        try:
            jobs = {str(channel): JobId(UUID(str(job))) for channel, job in item["jobs"].items()}
            seed = None if item.get("seed") is None else int(item["seed"])
            points_cost = int(item.get("points_cost", 0))
        except (KeyError, AttributeError, TypeError, ValueError) as exc:
            raise ResponseError(f"Malformed generation item: {item!r}") from exc
        return GeneratedItem(successful=True, jobs=jobs, seed=seed, points_cost=points_cost)

    async def resolve_download_url(
        self,
        client: httpx.AsyncClient,
        job_id: JobId,
        *,
        timeout: float | None,
    ) -> DownloadUrlResult:
        response = await self._send(
            client,
            "POST",
            f"{_JOBS_ENDPOINT}/{job_id}/download-url",
            timeout=timeout,
            json={"timeout": timeout},
        )
        if response.is_server_error:
            logger.warning("Transient %s resolving %s", response.status_code, job_id)
            return DownloadUrlResult(status=JobStatus.WORKING)
        if response.is_error:
            code, messages = self._failure(response)
            return DownloadUrlResult(status=JobStatus.FAILED, error_code=code, messages=messages)
        data = _json_body(response)
        try:
            status = JobStatus(str(data.get("status", JobStatus.WORKING.value)).lower())
        except ValueError:
            logger.warning("Unknown job status %r for %s", data.get("status"), job_id)
            status = JobStatus.WORKING
        if status is JobStatus.FAILED:
            return DownloadUrlResult(
                status=status,
                error_code=_error_code(data, ResultErrorCode.UNKNOWN),
                messages=_messages(data),
            )
        url = data.get("url")
        return DownloadUrlResult(status=status, url=url if isinstance(url, str) else None)

    async def fetch_artifact(self, client: httpx.AsyncClient, url: str) -> bytes:
        try:
            response = await client.get(url)
        except httpx.TimeoutException as exc:
            raise RemoteTimeoutError(f"GET {url} timed out") from exc
        response.raise_for_status()
        return response.content


__all__ = ["HttpGenerationBackend"]
