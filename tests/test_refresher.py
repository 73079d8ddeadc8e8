import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from polywatch.cache import BalanceCache
from polywatch.domain import (
    Balance,
    CacheOpError,
    NetworkError,
    RefreshFailed,
    RefreshOk,
)
from polywatch.refresher import BalanceFetcher, Cmd, do_fetch, run


class FakeFetcher(BalanceFetcher):
    def __init__(self, amount, fail=False):
        self.usdc = Decimal(amount)
        self.fail = fail
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        if self.fail:
            raise NetworkError("x")
        return Balance(usdc=self.usdc, fetched_at=datetime.now(timezone.utc))


class MemCache(BalanceCache):
    def __init__(self, fail=False):
        self.last = None
        self.fail = fail

    async def get(self):
        return self.last

    async def set(self, balance):
        if self.fail:
            raise CacheOpError("boom")
        self.last = balance

    async def ping(self):
        return None


@pytest.mark.asyncio
async def test_do_fetch_writes_cache_and_emits_ok():
    fetcher = FakeFetcher("100")
    cache = MemCache()
    queue = asyncio.Queue()
    await do_fetch(fetcher, cache, queue)
    status = queue.get_nowait()
    assert isinstance(status, RefreshOk)
    assert cache.last.usdc == Decimal("100")


@pytest.mark.asyncio
async def test_do_fetch_emits_failed_when_fetch_errors():
    fetcher = FakeFetcher("100", fail=True)
    cache = MemCache()
    queue = asyncio.Queue()
    await do_fetch(fetcher, cache, queue)
    status = queue.get_nowait()
    assert isinstance(status, RefreshFailed)
    assert status.error == "CLOB request failed: x"
    assert cache.last is None


@pytest.mark.asyncio
async def test_do_fetch_reports_cache_failure():
    fetcher = FakeFetcher("100")
    cache = MemCache(fail=True)
    queue = asyncio.Queue()
    await do_fetch(fetcher, cache, queue)
    status = queue.get_nowait()
    assert isinstance(status, RefreshFailed)
    assert status.error.startswith("cache: ")
    assert "boom" in status.error


@pytest.mark.asyncio
async def test_force_refresh_command_triggers_fetch():
    fetcher = FakeFetcher("50")
    cache = MemCache()
    status_queue = asyncio.Queue()
    cmd_queue = asyncio.Queue()
    shutdown = asyncio.Event()
    task = asyncio.create_task(
        run(fetcher, cache, cmd_queue, status_queue, 60, shutdown)
    )

    await cmd_queue.put(Cmd.FORCE_REFRESH)
    status = await asyncio.wait_for(status_queue.get(), 1)
    assert isinstance(status, RefreshOk)
    assert cache.last.usdc == Decimal("50")

    shutdown.set()
    await asyncio.wait_for(task, 1)


@pytest.mark.asyncio
async def test_interval_elapse_triggers_fetch():
    fetcher = FakeFetcher("7")
    cache = MemCache()
    status_queue = asyncio.Queue()
    shutdown = asyncio.Event()
    task = asyncio.create_task(
        run(fetcher, cache, asyncio.Queue(), status_queue, 0.01, shutdown)
    )
    status = await asyncio.wait_for(status_queue.get(), 1)
    assert isinstance(status, RefreshOk)
    shutdown.set()
    await asyncio.wait_for(task, 1)
    assert fetcher.calls >= 1


@pytest.mark.asyncio
async def test_shutdown_token_cancels_loop():
    fetcher = FakeFetcher("1")
    cache = MemCache()
    shutdown = asyncio.Event()
    task = asyncio.create_task(
        run(fetcher, cache, asyncio.Queue(), asyncio.Queue(), 60, shutdown)
    )
    await asyncio.sleep(0)
    shutdown.set()
    await asyncio.wait_for(task, 1)
    assert task.done()
    assert fetcher.calls == 0