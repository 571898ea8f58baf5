"""Cost estimation with per-asset supersession."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

import httpx

from atelier.domain import (
    AssetId,
    CostEstimate,
    GenerationSpec,
    QuoteOutcome,
    QuoteRejected,
    ResultErrorCode,
    UnsupportedCombination,
    ValidationFailure,
)
from atelier.providers import (
    GenerationBackend,
    ProfileRegistry,
    ProviderError,
    UnsupportedCombinationError,
)
from atelier.transport import TransportLease

from .observers import LoggingObserver, QuoteObserver
from .requests import build_requests

INVALID_CONFIGURATION = "Invalid generator configuration. Please check the API settings."
INVALID_ASSET = "Selected asset is invalid. Please select a valid asset."
MISSING_MODEL = "No model selected. Please select a valid model."


class QuoteController:
    """Requests cost estimates, keeping at most one quote in flight per asset.

    A new request for an asset cancels the previous one without waiting for it.
    The superseded caller receives ``None`` and its quote publishes nothing further.
    """

    def __init__(
        self,
        backend: GenerationBackend,
        lease: TransportLease,
        profiles: ProfileRegistry,
        *,
        observer: QuoteObserver | None = None,
        asset_exists: Callable[[AssetId], bool] | None = None,
        quote_timeout: float | None = 30.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._backend = backend
        self._lease = lease
        self._profiles = profiles
        self._observer = observer or LoggingObserver()
        self._asset_exists = asset_exists
        self._quote_timeout = quote_timeout
        self._logger = logger or logging.getLogger(__name__)
        self._inflight: dict[AssetId, asyncio.Task[QuoteOutcome]] = {}

    def in_flight(self, asset: AssetId) -> bool:
        task = self._inflight.get(asset)
        return task is not None and not task.done()

    def cancel(self, asset: AssetId) -> bool:
        task = self._inflight.pop(asset, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_all(self) -> int:
        return sum(self.cancel(asset) for asset in list(self._inflight))

    async def request_quote(self, asset: AssetId, spec: GenerationSpec) -> QuoteOutcome | None:
        """Quote ``spec`` for ``asset``; ``None`` when a newer request superseded this one."""

        # supersede and register with no suspension point in between
        previous = self._inflight.get(asset)
        if previous is not None and not previous.done():
            previous.cancel()
        task = asyncio.create_task(self._quote(asset, spec))
        self._inflight[asset] = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            self._logger.debug("Quote for %s superseded", asset)
            return None
        finally:
            if self._inflight.get(asset) is task:
                del self._inflight[asset]

    def _is_current(self, asset: AssetId) -> bool:
        return self._inflight.get(asset) is asyncio.current_task()

    def _validating(self, asset: AssetId, description: str) -> None:
        if self._is_current(asset):
            self._observer.validating(asset, description)

    def _finish(self, asset: AssetId, outcome: QuoteOutcome) -> QuoteOutcome:
        if self._is_current(asset):
            self._observer.quote_result(asset, outcome)
        return outcome

    async def _quote(self, asset: AssetId, spec: GenerationSpec) -> QuoteOutcome:
        self._validating(asset, "Validating user")
        if not self._backend.is_configured():
            failure = ValidationFailure(INVALID_CONFIGURATION, ResultErrorCode.TOKEN_INVALID)
            return self._finish(asset, failure)
        if self._asset_exists is not None and not self._asset_exists(asset):
            return self._finish(asset, ValidationFailure(INVALID_ASSET))
        try:
            profile = self._profiles.require(spec)
        except UnsupportedCombinationError as exc:
            return self._finish(asset, UnsupportedCombination(str(exc)))
        if profile.requires_model(spec.refinement_mode) and not spec.model_id:
            failure = ValidationFailure(MISSING_MODEL, ResultErrorCode.UNKNOWN_MODEL)
            return self._finish(asset, failure)

        self._validating(asset, "Validating")
        references = {name: path.name for name, path in spec.references.items()}
        requests = build_requests(profile, spec, seed=spec.custom_seed, references=references)
        try:
            async with self._lease.lease() as client:
                result = await self._backend.quote(client, requests, timeout=self._quote_timeout)
        except ProviderError as exc:
            self._logger.warning("Quote for %s failed: %s", asset, exc)
            return self._finish(asset, QuoteRejected(exc.error_code, (str(exc),)))
        except httpx.HTTPError as exc:
            self._logger.warning("Quote for %s failed: %s", asset, exc)
            return self._finish(asset, QuoteRejected(ResultErrorCode.UNKNOWN, (str(exc),)))

        if not result.successful:
            messages = tuple(dict.fromkeys(message for message in result.messages if message))
            if not messages:
                environment = self._backend.environment
                messages = (f"An error occurred during validation ({environment}).",)
            return self._finish(asset, QuoteRejected(result.error_code, messages))
        return self._finish(asset, CostEstimate(points_cost=max(0, result.points_cost)))


__all__ = ["QuoteController"]
