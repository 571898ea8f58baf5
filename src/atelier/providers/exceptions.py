"""Remote backend exceptions."""

from __future__ import annotations

from atelier.domain import ResultErrorCode


class ProviderError(RuntimeError):
    """Base class for remote backend failures."""

    error_code: ResultErrorCode = ResultErrorCode.UNKNOWN


class BackendNotConfiguredError(ProviderError):
    """Raised when the backend lacks the credentials or endpoint to make a call."""

    error_code = ResultErrorCode.TOKEN_INVALID


class RemoteTimeoutError(ProviderError, TimeoutError):
    """Raised when a remote call exceeds its deadline."""

    error_code = ResultErrorCode.SDK_TIMEOUT


class ResponseError(ProviderError):
    """Raised when the remote service returns an unusable response."""

    def __init__(self, message: str, error_code: ResultErrorCode = ResultErrorCode.UNKNOWN) -> None:
        super().__init__(message)
        self.error_code = error_code


class UnsupportedCombinationError(ProviderError):
    """Raised when an artifact profile does not support the requested parameters."""

    error_code = ResultErrorCode.SDK_VALIDATION_FAILED
