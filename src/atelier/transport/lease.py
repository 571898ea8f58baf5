"""Shared HTTP client leased for the duration of one top-level operation."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

logger = logging.getLogger(__name__)


class TransportLease:
    """Reference-counted owner of a pooled ``httpx.AsyncClient``.

    Nested or concurrent leases share one client. The client is closed when the
    last lease is released, so no connection outlives the operations using it.
    """

    def __init__(
        self,
        *,
        base_url: str = "",
        timeout: float | None = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._active = 0

    @property
    def active_leases(self) -> int:
        return self._active

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is None or self._client.is_closed:
            self._client = self._build_client()
            logger.debug("Opened transport for %s", self._base_url or "<no base url>")
        self._active += 1
        client = self._client
        try:
            yield client
        finally:
            self._active -= 1
            if self._active == 0 and self._client is client:
                self._client = None
                await client.aclose()
                logger.debug("Closed transport for %s", self._base_url or "<no base url>")

    async def aclose(self) -> None:
        client, self._client = self._client, None
        if client is not None and not client.is_closed:
            await client.aclose()


__all__ = ["TransportLease"]
