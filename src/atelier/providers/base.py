"""Remote backend contract and artifact profiles."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import BinaryIO, Protocol, runtime_checkable

import httpx

from atelier.domain import ArtifactKind, GenerationSpec, JobId, RefinementMode

from .exceptions import UnsupportedCombinationError
from .models import DownloadUrlResult, GenerateResult, QuoteResult, RemoteRequest, UploadResult

SOURCE_REFERENCE = "source"


@runtime_checkable
class GenerationBackend(Protocol):
    """Opaque RPC boundary to the remote generation service.

    Every call receives the leased HTTP client so connections are shared for the
    duration of one top-level operation. ``timeout=None`` means no deadline.
    """

    environment: str

    def is_configured(self) -> bool: ...

    async def quote(
        self,
        client: httpx.AsyncClient,
        requests: Sequence[RemoteRequest],
        *,
        timeout: float | None,
    ) -> QuoteResult: ...

    async def upload_reference(
        self,
        client: httpx.AsyncClient,
        name: str,
        handle: BinaryIO,
    ) -> UploadResult: ...

    async def generate(
        self,
        client: httpx.AsyncClient,
        requests: Sequence[RemoteRequest],
        *,
        timeout: float | None,
    ) -> GenerateResult: ...

    async def resolve_download_url(
        self,
        client: httpx.AsyncClient,
        job_id: JobId,
        *,
        timeout: float | None,
    ) -> DownloadUrlResult: ...

    async def fetch_artifact(self, client: httpx.AsyncClient, url: str) -> bytes: ...


@dataclass(frozen=True, slots=True)
class ArtifactProfile:
    """Per-kind parameters collapsing the artifact families into one pipeline."""

    kind: ArtifactKind
    display_name: str
    channels: tuple[str, ...]
    supported_modes: frozenset[RefinementMode]
    extension: str
    max_variations: int = 4
    single_variation_modes: frozenset[RefinementMode] = frozenset(
        {RefinementMode.UPSCALE, RefinementMode.PBR}
    )
    auto_apply_modes: frozenset[RefinementMode] = frozenset()
    model_required_modes: frozenset[RefinementMode] = frozenset({RefinementMode.GENERATION})
    channel_extensions: Mapping[str, str] = field(default_factory=dict)

    @property
    def primary_channel(self) -> str:
        return self.channels[0]

    def supports(self, mode: RefinementMode) -> bool:
        return mode in self.supported_modes

    def requires_model(self, mode: RefinementMode) -> bool:
        return mode in self.model_required_modes

    def extension_for(self, channel: str) -> str:
        return self.channel_extensions.get(channel, self.extension)

    def auto_applies(self, mode: RefinementMode) -> bool:
        return mode in self.auto_apply_modes

    def effective_variations(self, spec: GenerationSpec) -> int:
        if spec.refinement_mode in self.single_variation_modes:
            return 1
        return spec.variations

    def ensure_supported(self, spec: GenerationSpec) -> None:
        if spec.kind is not self.kind:
            msg = f"{self.display_name} profile cannot handle {spec.kind} requests"
            raise UnsupportedCombinationError(msg)
        if not self.supports(spec.refinement_mode):
            msg = f"{self.display_name} does not support {spec.refinement_mode} refinement"
            raise UnsupportedCombinationError(msg)
        if spec.refinement_mode in self.single_variation_modes:
            if SOURCE_REFERENCE not in spec.references:
                msg = f"{spec.refinement_mode} refinement requires a '{SOURCE_REFERENCE}' reference"
                raise UnsupportedCombinationError(msg)
            return
        if not 1 <= spec.variations <= self.max_variations:
            msg = (
                f"{self.display_name} supports between 1 and {self.max_variations} variations, "
                f"got {spec.variations}"
            )
            raise UnsupportedCombinationError(msg)


__all__ = ["SOURCE_REFERENCE", "ArtifactProfile", "GenerationBackend"]
