"""Serialized maintenance pass indexing stored artifacts."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from atelier.domain import AssetId

from .materialize import METADATA_FILENAME, asset_directory_name


@dataclass(frozen=True, slots=True)
class CatalogEntry:
    asset: AssetId
    directory: Path
    metadata: Mapping[str, Any]

    @property
    def custom_seed(self) -> int | None:
        seed = self.metadata.get("custom_seed")
        return seed if isinstance(seed, int) else None


class ArtifactCatalog:
    """In-memory index of stored artifacts, keyed by asset then directory."""

    def __init__(self) -> None:
        self._entries: dict[AssetId, dict[Path, CatalogEntry]] = {}

    def add(self, entry: CatalogEntry) -> None:
        self._entries.setdefault(entry.asset, {})[entry.directory] = entry

    def entries(self, asset: AssetId) -> tuple[CatalogEntry, ...]:
        return tuple(self._entries.get(asset, {}).values())

    def __contains__(self, directory: object) -> bool:
        return any(directory in entries for entries in self._entries.values())

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())


class PrecacheGate:
    """Runs at most one catalog pass at a time.

    A caller arriving while a pass is running waits for it, up to ``timeout``
    seconds, and then gives up quietly instead of failing.
    """

    def __init__(
        self,
        artifacts_root: Path,
        *,
        timeout: float | None = 30.0,
        max_concurrency: int = 4,
        logger: logging.Logger | None = None,
    ) -> None:
        self._artifacts_root = artifacts_root
        self._timeout = timeout
        self._max_concurrency = max_concurrency
        self._lock = asyncio.Lock()
        self._logger = logger or logging.getLogger(__name__)

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def run(self, asset: AssetId, catalog: ArtifactCatalog) -> int | None:
        """Load unseen metadata sidecars of ``asset`` into ``catalog``.

        Returns the number of entries added, or ``None`` when the wait for the
        running pass exceeded the timeout.
        """

        try:
            async with asyncio.timeout(self._timeout):
                await self._lock.acquire()
        except TimeoutError:
            self._logger.warning("Precache for %s skipped, another pass is still running", asset)
            return None
        try:
            return await self._load(asset, catalog)
        finally:
            self._lock.release()

    async def _load(self, asset: AssetId, catalog: ArtifactCatalog) -> int:
        asset_root = self._artifacts_root / asset_directory_name(asset)
        if not asset_root.is_dir():
            return 0
        directories = [
            path
            for path in sorted(asset_root.iterdir())
            if (path / METADATA_FILENAME).is_file() and path not in catalog
        ]
        semaphore = asyncio.Semaphore(self._max_concurrency)
        added = 0

        async def _runner(directory: Path) -> None:
            nonlocal added
            async with semaphore:
                sidecar = directory / METADATA_FILENAME
                try:
                    raw = await asyncio.to_thread(sidecar.read_text, encoding="utf-8")
                    metadata = json.loads(raw)
                except (OSError, ValueError) as exc:
                    self._logger.warning("Skipping unreadable metadata %s: %s", sidecar, exc)
                    return
                if not isinstance(metadata, dict):
                    self._logger.warning("Skipping malformed metadata %s", sidecar)
                    return
                catalog.add(CatalogEntry(asset=asset, directory=directory, metadata=metadata))
                added += 1

        await asyncio.gather(*(_runner(directory) for directory in directories))
        self._logger.debug("Precached %d artifacts for %s", added, asset)
        return added


__all__ = ["ArtifactCatalog", "CatalogEntry", "PrecacheGate"]
