"""Core value types, health derivation and error hierarchy."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional, Union

# USDC.e on Polygon has 6 decimals; the CLOB reports balances in µUSDC.
USDC_SCALE = 1_000_000

_FRACTION = re.compile(r"\.(\d+)")


def _format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_timestamp(value: Any) -> datetime:
    if not isinstance(value, str):
        raise ValueError(f"timestamp must be a string, got {value!r}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # Sub-microsecond precision is dropped; fromisoformat wants 3 or 6 digits.
    text = _FRACTION.sub(
        lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1
    )
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"invalid timestamp {value!r}") from None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _parse_decimal(value: Any) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ValueError(f"invalid decimal {value!r}")
    try:
        result = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"invalid decimal {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"invalid decimal {value!r}")
    return result


def usdc_from_micros(raw: Union[int, str, Decimal]) -> Decimal:
    """Convert a raw on-chain µUSDC amount to plain USDC."""
    return Decimal(raw) / Decimal(USDC_SCALE)


@dataclass(frozen=True)
class Balance:
    """A wallet USDC balance and when it was fetched."""

    usdc: Decimal
    fetched_at: datetime

    def to_json(self) -> str:
        return json.dumps(
            {"usdc": str(self.usdc), "fetched_at": _format_timestamp(self.fetched_at)}
        )

    @classmethod
    def from_json(cls, text: str) -> "Balance":
        """Parse the JSON form written by to_json; raises ValueError if malformed."""
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("balance must be a JSON object")
        try:
            return cls(
                usdc=_parse_decimal(data["usdc"]),
                fetched_at=_parse_timestamp(data["fetched_at"]),
            )
        except KeyError as exc:
            raise ValueError(f"missing field {exc.args[0]!r}") from None


@dataclass(frozen=True)
class RefreshOk:
    """A balance refresh that succeeded."""

    at: datetime


@dataclass(frozen=True)
class RefreshFailed:
    """A balance refresh that failed, with the reason."""

    at: datetime
    error: str


RefreshStatus = Union[RefreshOk, RefreshFailed]


class HealthLed(Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"

    @classmethod
    def from_clob_age(
        cls,
        last_status: Optional[RefreshStatus],
        interval: Union[timedelta, float, int],
        now: datetime,
    ) -> "HealthLed":
        """Derive the CLOB LED from the time since the last successful refresh."""
        if last_status is None or isinstance(last_status, RefreshFailed):
            return cls.RED
        period = (
            interval.total_seconds()
            if isinstance(interval, timedelta)
            else float(interval)
        )
        age = max((now - last_status.at).total_seconds(), 0.0)
        if age < 1.5 * period:
            return cls.GREEN
        if age < 3.0 * period:
            return cls.YELLOW
        return cls.RED


class AppEventKind(Enum):
    TICK = "tick"
    KEY = "key"
    REFRESH = "refresh"
    SHUTDOWN = "shutdown"
    TRADER_EVENT = "trader_event"
    MARKET_UPDATE = "market_update"
    POSITIONS_UPDATE = "positions_update"


@dataclass(frozen=True)
class AppEvent:
    """A message delivered to the application loop."""

    kind: AppEventKind
    payload: Any = None


class FetchError(Exception):
    """A CLOB or data-api request failed."""


class NetworkError(FetchError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"CLOB request failed: {detail}")
        self.detail = detail


class DecodeError(FetchError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"CLOB returned invalid data: {detail}")
        self.detail = detail


class AuthError(FetchError):
    def __init__(self) -> None:
        super().__init__("authentication failed")


class CacheError(Exception):
    """A cache read or write failed."""


class CacheDisconnected(CacheError):
    def __init__(self) -> None:
        super().__init__("redis connection lost")


class CacheOpError(CacheError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"redis op failed: {detail}")
        self.detail = detail


class CacheDecodeError(CacheError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"cache value malformed: {detail}")
        self.detail = detail