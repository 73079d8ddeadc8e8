from datetime import datetime, timezone
from decimal import Decimal

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from polywatch.cache import BALANCE_KEY_PROD, RedisBalanceCache
from polywatch.domain import (
    Balance,
    CacheDecodeError,
    CacheDisconnected,
    CacheOpError,
)


class FakeClient:
    def __init__(self, error=None):
        self.store = {}
        self.error = error
        self.pings = 0

    async def get(self, key):
        if self.error:
            raise self.error
        return self.store.get(key)

    async def set(self, key, value):
        if self.error:
            raise self.error
        self.store[key] = value

    async def ping(self):
        if self.error:
            raise self.error
        self.pings += 1
        return True


def sample_balance():
    return Balance(
        usdc=Decimal("173.698381"),
        fetched_at=datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc),
    )


@pytest.mark.asyncio
async def test_set_writes_under_namespaced_prod_key():
    client = FakeClient()
    cache = RedisBalanceCache(client)
    await cache.set(sample_balance())
    assert list(client.store) == ["poly:prod:balance:latest"]
    assert BALANCE_KEY_PROD.startswith("poly:prod:")


@pytest.mark.asyncio
async def test_set_then_get_roundtrip():
    client = FakeClient()
    cache = RedisBalanceCache(client)
    await cache.set(sample_balance())
    assert list(client.store) == [BALANCE_KEY_PROD]
    assert await cache.get() == sample_balance()


@pytest.mark.asyncio
async def test_get_missing_returns_none():
    cache = RedisBalanceCache(FakeClient())
    assert await cache.get() is None


@pytest.mark.asyncio
async def test_get_accepts_bytes_values():
    client = FakeClient()
    client.store[BALANCE_KEY_PROD] = sample_balance().to_json().encode("utf-8")
    cache = RedisBalanceCache(client)
    assert await cache.get() == sample_balance()


@pytest.mark.asyncio
async def test_get_malformed_value_raises_decode_error():
    client = FakeClient()
    client.store[BALANCE_KEY_PROD] = "not json"
    cache = RedisBalanceCache(client)
    with pytest.raises(CacheDecodeError):
        await cache.get()


@pytest.mark.asyncio
async def test_connection_error_maps_to_disconnected():
    cache = RedisBalanceCache(FakeClient(error=RedisConnectionError("down")))
    with pytest.raises(CacheDisconnected):
        await cache.get()
    with pytest.raises(CacheDisconnected):
        await cache.set(sample_balance())


@pytest.mark.asyncio
async def test_timeout_maps_to_disconnected_on_ping():
    cache = RedisBalanceCache(FakeClient(error=RedisTimeoutError("slow")))
    with pytest.raises(CacheDisconnected):
        await cache.ping()


@pytest.mark.asyncio
async def test_other_redis_error_maps_to_op_error():
    cache = RedisBalanceCache(FakeClient(error=ResponseError("WRONGTYPE")))
    with pytest.raises(CacheOpError) as info:
        await cache.get()
    assert "WRONGTYPE" in str(info.value)


@pytest.mark.asyncio
async def test_ping_reaches_client():
    client = FakeClient()
    cache = RedisBalanceCache(client)
    await cache.ping()
    assert client.pings == 1


@pytest.mark.asyncio
async def test_connect_rejects_bad_url():
    with pytest.raises(CacheOpError) as info:
        await RedisBalanceCache.connect("http://example.com")
    assert "bad redis url" in str(info.value)