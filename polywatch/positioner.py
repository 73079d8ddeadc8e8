"""Periodic positions poll: fetch, cache and notify the application."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Union

from polywatch.domain import AppEvent, AppEventKind, CacheError, FetchError
from polywatch.positions import PositionsCache, PositionsFetcher

logger = logging.getLogger(__name__)


async def do_fetch(
    fetcher: PositionsFetcher,
    cache: PositionsCache,
    event_queue: "asyncio.Queue[AppEvent]",
) -> None:
    """Fetch once, write the cache and emit a positions update event."""
    try:
        positions = await fetcher.fetch()
    except FetchError as exc:
        # No event on failure: the application keeps the last known positions.
        logger.warning("positions fetch failed: %s", exc)
        return
    try:
        await cache.set(positions)
    except CacheError as exc:
        # Still emit so the UI gets fresh data even if the cache is broken.
        logger.warning("positions cache write failed: %s", exc)
    await event_queue.put(AppEvent(AppEventKind.POSITIONS_UPDATE, positions))


async def run(
    fetcher: PositionsFetcher,
    cache: PositionsCache,
    event_queue: "asyncio.Queue[AppEvent]",
    interval: Union[timedelta, float, int],
    shutdown: asyncio.Event,
) -> None:
    """Fetch immediately, then every `interval`, until `shutdown` is set."""
    period = (
        interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
    )
    await do_fetch(fetcher, cache, event_queue)
    while not shutdown.is_set():
        try:
            await asyncio.wait_for(shutdown.wait(), timeout=period)
        except asyncio.TimeoutError:
            await do_fetch(fetcher, cache, event_queue)
        else:
            break