"""Paced progress reporting while waiting on slow remote calls."""

from __future__ import annotations

import asyncio
import random
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from atelier.domain import GenerationProgress, ProgressId

from .observers import ProgressReporter


async def _tick(
    reporter: ProgressReporter,
    progress: GenerationProgress,
    end: float,
    interval: float,
) -> None:
    current = progress
    while True:
        await asyncio.sleep(interval)
        # creep towards the end of the window without reaching it
        step = (end - current.fraction) * random.uniform(0.05, 0.2)
        current = current.with_fraction(current.fraction + step)
        reporter.report_progress(current.progress_id, current.fraction, current.description)


@asynccontextmanager
async def paced_progress(
    reporter: ProgressReporter,
    progress_id: ProgressId,
    start: float,
    end: float,
    description: str,
    *,
    interval: float = 0.25,
) -> AsyncIterator[GenerationProgress]:
    """Report ``start`` immediately, then advance towards ``end`` until the block exits.

    ``end`` itself is reported only when the block exits without raising.
    """

    progress = GenerationProgress(progress_id=progress_id, fraction=start, description=description)
    reporter.report_progress(progress_id, progress.fraction, description)
    ticker = asyncio.create_task(_tick(reporter, progress, end, interval))
    try:
        yield progress
    finally:
        ticker.cancel()
        with suppress(asyncio.CancelledError):
            await ticker
    reporter.report_progress(progress_id, end, description)


__all__ = ["paced_progress"]
