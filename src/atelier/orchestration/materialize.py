"""Download-to-storage and apply-to-target for fulfilled groups."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shutil
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import unquote, urlparse

import httpx

from atelier.domain import AssetId, Batch, JobGroup, StoredArtifact
from atelier.providers import GenerationBackend, ProfileRegistry
from atelier.utils.time import utc_now

METADATA_FILENAME = "metadata.json"
_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")

logger = logging.getLogger(__name__)


def asset_directory_name(asset: AssetId) -> str:
    return _UNSAFE.sub("_", str(asset)).strip("_") or "asset"


@runtime_checkable
class Materializer(Protocol):
    """Applies stored artifacts to their target asset."""

    async def is_blank(self, asset: AssetId) -> bool: ...

    async def save_backup(self, asset: AssetId) -> bool: ...

    async def apply_artifact(self, asset: AssetId, artifact: StoredArtifact) -> bool: ...


class ArtifactStore:
    """Writes fulfilled groups under ``<root>/<asset>/<primary job id>/``.

    Every channel is fetched before anything is written, so a group is stored
    whole or not at all.
    """

    def __init__(
        self,
        root: Path,
        backend: GenerationBackend,
        profiles: ProfileRegistry,
    ) -> None:
        self._root = root
        self._backend = backend
        self._profiles = profiles

    @property
    def root(self) -> Path:
        return self._root

    def group_directory(self, asset: AssetId, group: JobGroup) -> Path:
        return self._root / asset_directory_name(asset) / str(group.primary_job.job_id)

    async def store(
        self,
        client: httpx.AsyncClient,
        batch: Batch,
        group: JobGroup,
        urls: Mapping[str, str],
    ) -> StoredArtifact:
        profile = self._profiles.get(batch.kind)
        channels = list(group.channels)
        payloads = await asyncio.gather(*(self._fetch(client, urls[ch]) for ch in channels))

        directory = self.group_directory(batch.asset, group)
        directory.mkdir(parents=True, exist_ok=True)
        paths: dict[str, Path] = {}
        for channel, data in zip(channels, payloads, strict=True):
            path = directory / f"{channel}{profile.extension_for(channel)}"
            path.write_bytes(data)
            paths[channel] = path

        metadata = {
            "batch_id": str(batch.batch_id),
            "asset": str(batch.asset),
            "kind": batch.kind.value,
            "jobs": {channel: str(job.job_id) for channel, job in group.channels.items()},
            "custom_seed": group.custom_seed,
            "generation": batch.metadata.model_dump(mode="json"),
            "stored_at": utc_now().isoformat(),
        }
        (directory / METADATA_FILENAME).write_text(
            json.dumps(metadata, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        logger.debug(
            "Stored group %s of %s in %s", group.primary_job.job_id, batch.asset, directory
        )
        return StoredArtifact(group=group, paths=paths)

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> bytes:
        parsed = urlparse(url)
        if parsed.scheme == "file":
            return Path(unquote(parsed.path)).read_bytes()
        return await self._backend.fetch_artifact(client, url)


class FileMaterializer(Materializer):
    """Treats assets as files below ``workspace_root`` and copies artifacts onto them."""

    def __init__(self, workspace_root: Path, backup_suffix: str = ".bak") -> None:
        self._workspace_root = workspace_root
        self._backup_suffix = backup_suffix

    def target_path(self, asset: AssetId) -> Path:
        return self._workspace_root / str(asset)

    async def is_blank(self, asset: AssetId) -> bool:
        target = self.target_path(asset)
        return not target.exists() or target.stat().st_size == 0

    async def save_backup(self, asset: AssetId) -> bool:
        target = self.target_path(asset)
        if not target.exists():
            return False
        backup = target.with_name(target.name + self._backup_suffix)
        if backup.exists():
            return False
        shutil.copyfile(target, backup)
        return True

    async def apply_artifact(self, asset: AssetId, artifact: StoredArtifact) -> bool:
        target = self.target_path(asset)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(artifact.primary_path, target)
        return True


__all__ = [
    "METADATA_FILENAME",
    "ArtifactStore",
    "FileMaterializer",
    "Materializer",
    "asset_directory_name",
]
