"""Periodic balance refresh: fetch, cache and report status."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Union

from polywatch.cache import BalanceCache
from polywatch.domain import (
    Balance,
    CacheError,
    FetchError,
    RefreshFailed,
    RefreshOk,
    RefreshStatus,
)


class BalanceFetcher(ABC):
    """Source of the current wallet balance."""

    @abstractmethod
    async def fetch(self) -> Balance:
        """Return a fresh balance; raises FetchError on failure."""


class Cmd(Enum):
    FORCE_REFRESH = "force_refresh"


def _seconds(interval: Union[timedelta, float, int]) -> float:
    if isinstance(interval, timedelta):
        return interval.total_seconds()
    return float(interval)


async def do_fetch(
    fetcher: BalanceFetcher,
    cache: BalanceCache,
    status_queue: "asyncio.Queue[RefreshStatus]",
) -> None:
    """Fetch once, write the cache and put the resulting status on the queue."""
    try:
        balance = await fetcher.fetch()
    except FetchError as exc:
        await status_queue.put(
            RefreshFailed(at=datetime.now(timezone.utc), error=str(exc))
        )
        return
    try:
        await cache.set(balance)
    except CacheError as exc:
        await status_queue.put(
            RefreshFailed(at=datetime.now(timezone.utc), error=f"cache: {exc}")
        )
        return
    await status_queue.put(RefreshOk(at=datetime.now(timezone.utc)))


async def run(
    fetcher: BalanceFetcher,
    cache: BalanceCache,
    cmd_queue: "asyncio.Queue[Cmd]",
    status_queue: "asyncio.Queue[RefreshStatus]",
    interval: Union[timedelta, float, int],
    shutdown: asyncio.Event,
) -> None:
    """Refresh on every interval or forced command until `shutdown` is set."""
    period = _seconds(interval)
    while not shutdown.is_set():
        stop_task = asyncio.ensure_future(shutdown.wait())
        cmd_task = asyncio.ensure_future(cmd_queue.get())
        try:
            done, pending = await asyncio.wait(
                {stop_task, cmd_task},
                timeout=period,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (stop_task, cmd_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(stop_task, cmd_task, return_exceptions=True)

        # Shutdown wins over any command that arrived at the same moment.
        if stop_task in done or shutdown.is_set():
            break
        if cmd_task in done:
            if cmd_task.result() is Cmd.FORCE_REFRESH:
                await do_fetch(fetcher, cache, status_queue)
        elif not done:
            await do_fetch(fetcher, cache, status_queue)