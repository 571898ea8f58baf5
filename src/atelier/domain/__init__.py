"""Domain layer public exports."""

from .base import DomainModel
from .enums import ArtifactKind, BatchStatus, JobStatus, RefinementMode, ResultErrorCode
from .generation import (
    Batch,
    GenerationJob,
    GenerationMetadata,
    GenerationProgress,
    GenerationSpec,
    JobGroup,
    Placeholder,
)
from .outcomes import (
    AlreadyHandled,
    AttemptResult,
    CostEstimate,
    DownloadOutcome,
    Fulfilled,
    HardFailed,
    QuoteOutcome,
    QuoteRejected,
    RetryReport,
    StoredArtifact,
    SubmissionAborted,
    TimedOut,
    UnsupportedCombination,
    ValidationFailure,
)
from .recovery import RecoveryRecord
from .types import AssetId, BatchId, GroupKey, JobId, ProgressId, SessionId

__all__ = [
    "AlreadyHandled",
    "ArtifactKind",
    "AssetId",
    "AttemptResult",
    "Batch",
    "BatchId",
    "BatchStatus",
    "CostEstimate",
    "DomainModel",
    "DownloadOutcome",
    "Fulfilled",
    "GenerationJob",
    "GenerationMetadata",
    "GenerationProgress",
    "GenerationSpec",
    "GroupKey",
    "HardFailed",
    "JobGroup",
    "JobId",
    "JobStatus",
    "Placeholder",
    "ProgressId",
    "QuoteOutcome",
    "QuoteRejected",
    "RecoveryRecord",
    "RefinementMode",
    "ResultErrorCode",
    "RetryReport",
    "SessionId",
    "StoredArtifact",
    "SubmissionAborted",
    "TimedOut",
    "UnsupportedCombination",
    "ValidationFailure",
]
