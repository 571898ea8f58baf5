"""Placeholder lifecycle for slots awaiting their artifacts."""

from __future__ import annotations

import logging
from collections import defaultdict

from atelier.domain import AssetId, Placeholder, ProgressId

logger = logging.getLogger(__name__)


class PlaceholderTracker:
    """In-memory registry of placeholders per asset."""

    def __init__(self) -> None:
        self._by_asset: dict[AssetId, list[Placeholder]] = defaultdict(list)

    def set(self, asset: AssetId, progress_id: ProgressId, count: int) -> tuple[Placeholder, ...]:
        """Create ``count`` placeholders for ``progress_id``, replacing any previous set."""

        self.remove(asset, progress_id)
        created = tuple(Placeholder(progress_id=progress_id, ordinal=i) for i in range(count))
        self._by_asset[asset].extend(created)
        return created

    def fulfill(self, asset: AssetId, progress_id: ProgressId, uri: str) -> Placeholder | None:
        """Attach ``uri`` to the first pending placeholder of ``progress_id``."""

        entries = self._by_asset.get(asset, [])
        for index, placeholder in enumerate(entries):
            if placeholder.progress_id == progress_id and not placeholder.fulfilled:
                fulfilled = placeholder.with_uri(uri)
                entries[index] = fulfilled
                return fulfilled
        logger.debug("No pending placeholder for %s/%s, %s kept as-is", asset, progress_id, uri)
        return None

    def remove(self, asset: AssetId, progress_id: ProgressId) -> int:
        entries = self._by_asset.get(asset)
        if not entries:
            return 0
        kept = [p for p in entries if p.progress_id != progress_id]
        removed = len(entries) - len(kept)
        if kept:
            self._by_asset[asset] = kept
        else:
            del self._by_asset[asset]
        return removed

    def pending(self, asset: AssetId) -> tuple[Placeholder, ...]:
        return tuple(p for p in self._by_asset.get(asset, ()) if not p.fulfilled)

    def fulfilled(self, asset: AssetId) -> tuple[Placeholder, ...]:
        return tuple(p for p in self._by_asset.get(asset, ()) if p.fulfilled)

    def prune_fulfilled(self, asset: AssetId) -> int:
        """Forget fulfilled placeholders once their artifacts are visible elsewhere."""

        entries = self._by_asset.get(asset)
        if not entries:
            return 0
        kept = [p for p in entries if not p.fulfilled]
        removed = len(entries) - len(kept)
        if kept:
            self._by_asset[asset] = kept
        else:
            del self._by_asset[asset]
        return removed


__all__ = ["PlaceholderTracker"]
