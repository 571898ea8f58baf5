from __future__ import annotations

from atelier.domain import AssetId, ProgressId
from atelier.orchestration import PlaceholderTracker

ASSET = AssetId("props/crate.png")


def test_set_replaces_previous_placeholders_for_same_progress() -> None:
    tracker = PlaceholderTracker()
    tracker.set(ASSET, ProgressId(1), 3)
    tracker.set(ASSET, ProgressId(2), 1)

    tracker.set(ASSET, ProgressId(1), 2)

    pending = tracker.pending(ASSET)
    assert sorted(p.progress_id for p in pending) == [1, 1, 2]


def test_fulfill_fills_in_order_and_ignores_extras() -> None:
    tracker = PlaceholderTracker()
    tracker.set(ASSET, ProgressId(1), 2)

    first = tracker.fulfill(ASSET, ProgressId(1), "file:///a.png")
    second = tracker.fulfill(ASSET, ProgressId(1), "file:///b.png")
    extra = tracker.fulfill(ASSET, ProgressId(1), "file:///c.png")

    assert first is not None and first.ordinal == 0
    assert second is not None and second.ordinal == 1
    assert extra is None
    assert tracker.pending(ASSET) == ()
    assert [p.uri for p in tracker.fulfilled(ASSET)] == ["file:///a.png", "file:///b.png"]


def test_remove_only_touches_one_progress_id() -> None:
    tracker = PlaceholderTracker()
    tracker.set(ASSET, ProgressId(1), 2)
    tracker.set(ASSET, ProgressId(2), 2)

    assert tracker.remove(ASSET, ProgressId(1)) == 2
    assert tracker.remove(ASSET, ProgressId(1)) == 0
    assert {p.progress_id for p in tracker.pending(ASSET)} == {ProgressId(2)}
    assert tracker.remove(AssetId("other.png"), ProgressId(2)) == 0


def test_prune_fulfilled_keeps_pending() -> None:
    tracker = PlaceholderTracker()
    tracker.set(ASSET, ProgressId(1), 2)
    tracker.fulfill(ASSET, ProgressId(1), "file:///a.png")

    assert tracker.prune_fulfilled(ASSET) == 1
    assert tracker.fulfilled(ASSET) == ()
    assert len(tracker.pending(ASSET)) == 1
    assert tracker.prune_fulfilled(AssetId("other.png")) == 0
