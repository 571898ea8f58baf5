"""Provider layer public exports."""

from .base import SOURCE_REFERENCE, ArtifactProfile, GenerationBackend
from .exceptions import (
    BackendNotConfiguredError,
    ProviderError,
    RemoteTimeoutError,
    ResponseError,
    UnsupportedCombinationError,
)
from .http import HttpGenerationBackend
from .models import (
    DownloadUrlResult,
    GeneratedItem,
    GenerateResult,
    QuoteResult,
    RemoteRequest,
    UploadResult,
)
from .registry import ProfileRegistry, default_registry
from .simulated import SimulatedGenerationBackend

__all__ = [
    "SOURCE_REFERENCE",
    "ArtifactProfile",
    "BackendNotConfiguredError",
    "DownloadUrlResult",
    "GenerateResult",
    "GeneratedItem",
    "GenerationBackend",
    "HttpGenerationBackend",
    "ProfileRegistry",
    "ProviderError",
    "QuoteResult",
    "RemoteRequest",
    "RemoteTimeoutError",
    "ResponseError",
    "SimulatedGenerationBackend",
    "UnsupportedCombinationError",
    "UploadResult",
    "default_registry",
]
