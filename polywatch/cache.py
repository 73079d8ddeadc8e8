"""Balance cache interface and its Redis implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from polywatch.domain import (
    Balance,
    CacheDecodeError,
    CacheDisconnected,
    CacheError,
    CacheOpError,
)

# Namespaced so test data can never collide with production data.
BALANCE_KEY_PROD = "poly:prod:balance:latest"


class BalanceCache(ABC):
    """Store for the latest wallet balance."""

    @abstractmethod
    async def get(self) -> Optional[Balance]:
        """Return the cached balance, or None; raises CacheError on failure."""

    @abstractmethod
    async def set(self, balance: Balance) -> None:
        """Store a balance; raises CacheError on failure."""

    @abstractmethod
    async def ping(self) -> None:
        """Check the backend is reachable; raises CacheError on failure."""


def _map_error(exc: RedisError) -> CacheError:
    if isinstance(exc, (RedisConnectionError, RedisTimeoutError)):
        return CacheDisconnected()
    return CacheOpError(str(exc))


class RedisBalanceCache(BalanceCache):
    """Balance cache kept as JSON under a single Redis key."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    async def connect(cls, url: str) -> "RedisBalanceCache":
        """Open a client for `url` and verify the server answers."""
        try:
            client = aioredis.from_url(url, decode_responses=True)
        except ValueError as exc:
            raise CacheOpError(f"bad redis url: {exc}") from exc
        try:
            await client.ping()
        except RedisError as exc:
            await client.aclose()
            raise CacheOpError(f"redis init: {exc}") from exc
        return cls(client)

    async def get(self) -> Optional[Balance]:
        try:
            raw = await self._client.get(BALANCE_KEY_PROD)
        except RedisError as exc:
            raise _map_error(exc) from exc
        if raw is None:
            return None
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise CacheDecodeError(str(exc)) from exc
        try:
            return Balance.from_json(raw)
        except ValueError as exc:
            raise CacheDecodeError(str(exc)) from exc

    async def set(self, balance: Balance) -> None:
        payload = balance.to_json()
        try:
            await self._client.set(BALANCE_KEY_PROD, payload)
        except RedisError as exc:
            raise _map_error(exc) from exc

    async def ping(self) -> None:
        try:
            await self._client.ping()
        except RedisError as exc:
            raise _map_error(exc) from exc