"""Observer contracts the pipeline reports to, with logging-backed defaults.

Observers are fire-and-forget: they are plain synchronous callbacks and must not
block the event loop.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from atelier.domain import (
    AssetId,
    CostEstimate,
    ProgressId,
    QuoteOutcome,
    QuoteRejected,
    UnsupportedCombination,
    ValidationFailure,
)


@runtime_checkable
class ProgressReporter(Protocol):
    def report_progress(
        self,
        progress_id: ProgressId,
        fraction: float,
        description: str,
    ) -> None: ...


@runtime_checkable
class MessageSink(Protocol):
    """Receives human-readable messages attributed to a target asset."""

    def report_message(self, asset: AssetId, text: str) -> None: ...


@runtime_checkable
class QuoteObserver(Protocol):
    def validating(self, asset: AssetId, description: str) -> None: ...

    def quote_result(self, asset: AssetId, outcome: QuoteOutcome) -> None: ...


@runtime_checkable
class GenerationGate(Protocol):
    """Enables or disables the caller's ability to start another generation."""

    def set_generation_allowed(self, asset: AssetId, allowed: bool) -> None: ...


def describe_quote(outcome: QuoteOutcome) -> str:
    if isinstance(outcome, CostEstimate):
        return f"{outcome.points_cost} points"
    if isinstance(outcome, ValidationFailure):
        return outcome.reason
    if isinstance(outcome, QuoteRejected):
        return "; ".join(outcome.messages) or str(outcome.error_code)
    if isinstance(outcome, UnsupportedCombination):
        return outcome.reason
    return repr(outcome)


class LoggingObserver(ProgressReporter, MessageSink, QuoteObserver, GenerationGate):
    """Default observer writing every notification to a logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._blocked: set[AssetId] = set()

    def report_progress(self, progress_id: ProgressId, fraction: float, description: str) -> None:
        self._logger.debug("[%s] %3.0f%% %s", progress_id, fraction * 100, description)

    def report_message(self, asset: AssetId, text: str) -> None:
        self._logger.warning("%s: %s", asset, text)

    def validating(self, asset: AssetId, description: str) -> None:
        self._logger.debug("%s: %s", asset, description)

    def quote_result(self, asset: AssetId, outcome: QuoteOutcome) -> None:
        self._logger.info("%s: quote %s", asset, describe_quote(outcome))

    def set_generation_allowed(self, asset: AssetId, allowed: bool) -> None:
        if allowed:
            self._blocked.discard(asset)
        else:
            self._blocked.add(asset)

    def generation_allowed(self, asset: AssetId) -> bool:
        return asset not in self._blocked


__all__ = [
    "GenerationGate",
    "LoggingObserver",
    "MessageSink",
    "ProgressReporter",
    "QuoteObserver",
    "describe_quote",
]
