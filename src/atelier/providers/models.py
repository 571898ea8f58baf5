"""Shared models for the remote generation boundary."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from atelier.domain import ArtifactKind, JobId, JobStatus, RefinementMode, ResultErrorCode


@dataclass(slots=True)
class RemoteRequest:
    """One generation request as sent over the wire."""

    kind: ArtifactKind
    refinement_mode: RefinementMode
    channels: tuple[str, ...]
    prompt: str = ""
    negative_prompt: str = ""
    model_id: str | None = None
    seed: int | None = None
    references: Mapping[str, str] = field(default_factory=dict)

    def to_payload(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "refinement_mode": self.refinement_mode.value,
            "channels": list(self.channels),
            "prompt": self.prompt,
            "negative_prompt": self.negative_prompt,
            "model_id": self.model_id,
            "seed": self.seed,
            "references": dict(self.references),
        }


@dataclass(slots=True)
class QuoteResult:
    successful: bool
    points_cost: int = 0
    error_code: ResultErrorCode = ResultErrorCode.NONE
    messages: Sequence[str] = ()


@dataclass(slots=True)
class UploadResult:
    """Remote reference to an uploaded input asset."""

    reference_id: str


@dataclass(slots=True)
class GeneratedItem:
    """Per-item result of a generate call, one job per channel when successful."""

    successful: bool
    jobs: Mapping[str, JobId] = field(default_factory=dict)
    seed: int | None = None
    points_cost: int = 0
    error_code: ResultErrorCode = ResultErrorCode.NONE
    messages: Sequence[str] = ()


@dataclass(slots=True)
class GenerateResult:
    successful: bool
    items: Sequence[GeneratedItem] = ()
    error_code: ResultErrorCode = ResultErrorCode.NONE
    messages: Sequence[str] = ()
    trace_id: str | None = None


@dataclass(slots=True)
class DownloadUrlResult:
    """State of one job; ``url`` is set once the job is done."""

    status: JobStatus
    url: str | None = None
    error_code: ResultErrorCode = ResultErrorCode.NONE
    messages: Sequence[str] = ()

    @property
    def failed(self) -> bool:
        return self.status is JobStatus.FAILED

    @property
    def ready(self) -> bool:
        return self.status is JobStatus.DONE and self.url is not None
