"""Generation jobs, groups and batches."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path
from uuid import uuid4

from pydantic import Field, field_validator, model_validator

from .base import DomainModel
from .enums import ArtifactKind, RefinementMode
from .types import AssetId, BatchId, GroupKey, JobId, ProgressId


class GenerationJob(DomainModel):
    """Remote handle for one requested artifact."""

    job_id: JobId
    seed: int | None = None


class JobGroup(DomainModel):
    """Atomic cluster of jobs, one per channel, that succeed or fail together.

    The first channel is the primary channel. Its job id names the group on disk
    and its seed is the custom seed reported back to the user.
    """

    channels: Mapping[str, GenerationJob]

    @field_validator("channels")
    @classmethod
    def ensure_channels(cls, value: Mapping[str, GenerationJob]) -> Mapping[str, GenerationJob]:
        if not value:
            raise ValueError("a job group requires at least one channel")
        return value

    @classmethod
    def single(cls, channel: str, job_id: JobId, seed: int | None = None) -> JobGroup:
        return cls(channels={channel: GenerationJob(job_id=job_id, seed=seed)})

    @property
    def primary_channel(self) -> str:
        return next(iter(self.channels))

    @property
    def primary_job(self) -> GenerationJob:
        return self.channels[self.primary_channel]

    @property
    def job_ids(self) -> tuple[JobId, ...]:
        return tuple(job.job_id for job in self.channels.values())

    @property
    def custom_seed(self) -> int | None:
        return self.primary_job.seed

    @property
    def key(self) -> GroupKey:
        """Canonical value key, independent of channel insertion order."""

        return tuple(sorted((channel, str(job.job_id)) for channel, job in self.channels.items()))


class GenerationMetadata(DomainModel):
    """Request parameters kept alongside a batch for provenance and resumption."""

    prompt: str = ""
    negative_prompt: str = ""
    model_id: str | None = None
    refinement_mode: RefinementMode = RefinementMode.GENERATION
    trace_id: str | None = None
    custom_seed: int | None = None
    points_cost: int = 0

    def with_trace_id(self, trace_id: str | None) -> GenerationMetadata:
        return self.model_copy(update={"trace_id": trace_id})


class Batch(DomainModel):
    """Ordered job groups submitted under one generation request."""

    batch_id: BatchId = Field(default_factory=lambda: BatchId(uuid4()))
    asset: AssetId
    kind: ArtifactKind
    progress_id: ProgressId
    groups: tuple[JobGroup, ...]
    metadata: GenerationMetadata = Field(default_factory=GenerationMetadata)
    retryable: bool = True
    auto_apply: bool = False

    @model_validator(mode="after")
    def ensure_unique_jobs(self) -> Batch:
        seen: set[JobId] = set()
        for group in self.groups:
            for job_id in group.job_ids:
                if job_id in seen:
                    raise ValueError(f"job {job_id} appears in more than one group")
                seen.add(job_id)
        return self

    @property
    def is_empty(self) -> bool:
        return not self.groups

    @property
    def group_keys(self) -> frozenset[GroupKey]:
        return frozenset(group.key for group in self.groups)

    @property
    def job_ids(self) -> tuple[JobId, ...]:
        return tuple(job_id for group in self.groups for job_id in group.job_ids)

    def with_groups(self, groups: Iterable[JobGroup]) -> Batch:
        return self.model_copy(update={"groups": tuple(groups)})

    def with_retryable(self, retryable: bool) -> Batch:
        return self.model_copy(update={"retryable": retryable})

    def restricted_to(self, keys: Iterable[GroupKey]) -> Batch:
        """Return the batch reduced to the groups whose keys are listed, order preserved."""

        wanted = set(keys)
        return self.with_groups(group for group in self.groups if group.key in wanted)

    def without(self, keys: Iterable[GroupKey]) -> Batch:
        dropped = set(keys)
        return self.with_groups(group for group in self.groups if group.key not in dropped)


class GenerationSpec(DomainModel):
    """User-facing description of a prospective generation."""

    kind: ArtifactKind
    refinement_mode: RefinementMode = RefinementMode.GENERATION
    prompt: str = ""
    negative_prompt: str = ""
    model_id: str | None = None
    variations: int = 1
    custom_seed: int | None = None
    references: Mapping[str, Path] = Field(default_factory=dict)
    auto_apply: bool = False

    def metadata(self) -> GenerationMetadata:
        return GenerationMetadata(
            prompt=self.prompt,
            negative_prompt=self.negative_prompt,
            model_id=self.model_id,
            refinement_mode=self.refinement_mode,
            custom_seed=self.custom_seed,
        )


class GenerationProgress(DomainModel):
    """Snapshot of a generation's progress."""

    progress_id: ProgressId
    task_count: int = 1
    fraction: float = 0.0
    description: str = ""

    def with_fraction(self, fraction: float, description: str | None = None) -> GenerationProgress:
        update: dict[str, object] = {"fraction": max(0.0, min(1.0, fraction))}
        if description is not None:
            update["description"] = description
        return self.model_copy(update=update)


class Placeholder(DomainModel):
    """Transient stand-in for a slot awaiting its artifact."""

    progress_id: ProgressId
    ordinal: int
    uri: str | None = None

    @property
    def fulfilled(self) -> bool:
        return self.uri is not None

    def with_uri(self, uri: str) -> Placeholder:
        return self.model_copy(update={"uri": uri})


__all__ = [
    "Batch",
    "GenerationJob",
    "GenerationMetadata",
    "GenerationProgress",
    "GenerationSpec",
    "JobGroup",
    "Placeholder",
]
