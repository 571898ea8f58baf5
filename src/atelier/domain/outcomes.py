"""Tagged outcome values returned by the pipeline instead of raised."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .enums import BatchStatus, ResultErrorCode
from .generation import Batch, JobGroup
from .types import AssetId


@dataclass(frozen=True, slots=True)
class Fulfilled:
    """Every channel of the group resolved to a download URL."""

    group: JobGroup
    urls: Mapping[str, str]


@dataclass(frozen=True, slots=True)
class TimedOut:
    """At least one channel missed the attempt deadline; the whole group is deferred."""

    group: JobGroup


@dataclass(frozen=True, slots=True)
class HardFailed:
    """The group is permanently dropped."""

    group: JobGroup
    reason: str
    error_code: ResultErrorCode = ResultErrorCode.UNKNOWN


@dataclass(frozen=True, slots=True)
class AlreadyHandled:
    """The group's failure was already reported during this attempt."""

    group: JobGroup


DownloadOutcome = Fulfilled | TimedOut | HardFailed | AlreadyHandled


@dataclass(frozen=True, slots=True)
class AttemptResult:
    """Classification of every group processed by one download attempt."""

    outcomes: tuple[DownloadOutcome, ...]
    remaining: Batch

    @property
    def fulfilled(self) -> tuple[Fulfilled, ...]:
        return tuple(o for o in self.outcomes if isinstance(o, Fulfilled))

    @property
    def timed_out(self) -> tuple[TimedOut, ...]:
        return tuple(o for o in self.outcomes if isinstance(o, TimedOut))

    @property
    def failed(self) -> tuple[HardFailed | AlreadyHandled, ...]:
        return tuple(o for o in self.outcomes if isinstance(o, HardFailed | AlreadyHandled))


@dataclass(frozen=True, slots=True)
class CostEstimate:
    points_cost: int


@dataclass(frozen=True, slots=True)
class ValidationFailure:
    """A pre-flight check failed; no network round trip was spent on the quote."""

    reason: str
    error_code: ResultErrorCode = ResultErrorCode.SDK_VALIDATION_FAILED


@dataclass(frozen=True, slots=True)
class QuoteRejected:
    error_code: ResultErrorCode
    messages: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class UnsupportedCombination:
    reason: str


QuoteOutcome = CostEstimate | ValidationFailure | QuoteRejected | UnsupportedCombination


@dataclass(frozen=True, slots=True)
class SubmissionAborted:
    """Submission produced no job; no batch exists for it."""

    asset: AssetId
    reason: str
    error_code: ResultErrorCode = ResultErrorCode.UNKNOWN


@dataclass(frozen=True, slots=True)
class StoredArtifact:
    """A fulfilled group written to local storage, one file per channel."""

    group: JobGroup
    paths: Mapping[str, Path]

    @property
    def primary_path(self) -> Path:
        return self.paths[self.group.primary_channel]

    @property
    def uri(self) -> str:
        return self.primary_path.as_uri()


@dataclass(slots=True)
class RetryReport:
    """Summary of one retry controller run."""

    batch: Batch
    status: BatchStatus
    attempts: int = 0
    artifacts: list[StoredArtifact] = field(default_factory=list)
    dropped: list[HardFailed | AlreadyHandled] = field(default_factory=list)
    applied: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status is BatchStatus.DONE


__all__ = [
    "AlreadyHandled",
    "AttemptResult",
    "CostEstimate",
    "DownloadOutcome",
    "Fulfilled",
    "HardFailed",
    "QuoteOutcome",
    "QuoteRejected",
    "RetryReport",
    "StoredArtifact",
    "SubmissionAborted",
    "TimedOut",
    "UnsupportedCombination",
    "ValidationFailure",
]
