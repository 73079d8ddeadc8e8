"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_REDIS_URL = "redis://127.0.0.1:6379"
DEFAULT_REFRESH_INTERVAL_SECS = 30
# The retired `clob-v2` hostname 301-redirects to `clob`, and a redirected POST
# is downgraded to GET, so signed orders must go to the canonical host directly.
DEFAULT_CLOB_HOST = "https://clob.polymarket.com"
DEFAULT_LOG_LEVEL = "info"
DEFAULT_POLYGON_RPC_URL = "https://polygon-rpc.com"

RETIRED_CLOB_HOST = "clob-v2.polymarket.com"


class ConfigError(Exception):
    """Raised when the configuration is missing, malformed or unsafe."""


@dataclass(frozen=True)
class Config:
    """Settings shared by the watcher, the refreshers and the tools."""

    polymarket_private_key: str
    redis_url: str = DEFAULT_REDIS_URL
    refresh_interval_secs: int = DEFAULT_REFRESH_INTERVAL_SECS
    clob_host: str = DEFAULT_CLOB_HOST
    log_level: str = DEFAULT_LOG_LEVEL
    polygon_rpc_url: str = DEFAULT_POLYGON_RPC_URL

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Build a config from upper-case environment variables and validate it."""
        env = os.environ if environ is None else environ

        private_key = env.get("POLYMARKET_PRIVATE_KEY")
        if private_key is None:
            raise ConfigError("missing value for field polymarket_private_key")

        raw_interval = env.get("REFRESH_INTERVAL_SECS")
        if raw_interval is None:
            interval = DEFAULT_REFRESH_INTERVAL_SECS
        else:
            try:
                interval = int(raw_interval.strip())
            except ValueError:
                raise ConfigError(
                    f"invalid value {raw_interval!r} for field refresh_interval_secs"
                ) from None
            if interval < 0:
                raise ConfigError(
                    f"invalid value {raw_interval!r} for field refresh_interval_secs"
                )

        config = cls(
            polymarket_private_key=private_key,
            redis_url=env.get("REDIS_URL", DEFAULT_REDIS_URL),
            refresh_interval_secs=interval,
            clob_host=env.get("CLOB_HOST", DEFAULT_CLOB_HOST),
            log_level=env.get("LOG_LEVEL", DEFAULT_LOG_LEVEL),
            polygon_rpc_url=env.get("POLYGON_RPC_URL", DEFAULT_POLYGON_RPC_URL),
        )
        config.validate_clob_host()
        return config

    def validate_clob_host(self) -> None:
        """Refuse the retired `clob-v2` host, whose redirect silently breaks orders."""
        if RETIRED_CLOB_HOST in self.clob_host:
            raise ConfigError(
                f"CLOB_HOST points at retired host '{self.clob_host}' — Polymarket "
                "301-redirects v2 to clob.polymarket.com and POST→GET downgrade "
                "returns HTTP 405. Update CLOB_HOST to https://clob.polymarket.com"
            )