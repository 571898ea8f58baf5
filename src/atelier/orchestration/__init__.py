"""Orchestration layer exports."""

from .download import BatchDownloadEngine
from .exceptions import DownloadAborted, InternalInvariantViolation, OrchestrationError
from .materialize import ArtifactStore, FileMaterializer, Materializer
from .observers import (
    GenerationGate,
    LoggingObserver,
    MessageSink,
    ProgressReporter,
    QuoteObserver,
)
from .pipeline import GenerationPipeline
from .placeholders import PlaceholderTracker
from .policy import RetryPolicy
from .precache import ArtifactCatalog, CatalogEntry, PrecacheGate
from .quote import QuoteController
from .retry import RetryController
from .submitter import JobSubmitter

__all__ = [
    "ArtifactCatalog",
    "ArtifactStore",
    "BatchDownloadEngine",
    "CatalogEntry",
    "DownloadAborted",
    "FileMaterializer",
    "GenerationGate",
    "GenerationPipeline",
    "InternalInvariantViolation",
    "JobSubmitter",
    "LoggingObserver",
    "Materializer",
    "MessageSink",
    "OrchestrationError",
    "PlaceholderTracker",
    "PrecacheGate",
    "ProgressReporter",
    "QuoteController",
    "QuoteObserver",
    "RetryController",
    "RetryPolicy",
]
