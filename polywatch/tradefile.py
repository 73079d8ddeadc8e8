"""Cached per-window trade history files."""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, List, Mapping, Union

from polywatch.domain import _parse_decimal


class TradeSide(Enum):
    BUY = "Buy"
    SELL = "Sell"

    @classmethod
    def parse(cls, value: Any) -> "TradeSide":
        if isinstance(value, str):
            found = {"buy": cls.BUY, "sell": cls.SELL}.get(value.strip().lower())
            if found is not None:
                return found
        raise ValueError(f"invalid trade side {value!r}")


class Outcome(Enum):
    UP = "Up"
    DOWN = "Down"

    @classmethod
    def parse(cls, value: Any) -> "Outcome":
        if isinstance(value, str):
            found = {"up": cls.UP, "down": cls.DOWN}.get(value.strip().lower())
            if found is not None:
                return found
        raise ValueError(f"invalid outcome {value!r}")


@dataclass(frozen=True)
class Trade:
    """One executed trade in a window's market."""

    timestamp: int
    price: Decimal
    size: Decimal
    side: TradeSide
    outcome: Outcome

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Trade":
        """Build a trade from its cached JSON object; raises ValueError if malformed."""
        if not isinstance(data, Mapping):
            raise ValueError("trade must be an object")
        try:
            timestamp = data["timestamp"]
            if isinstance(timestamp, bool) or not isinstance(timestamp, int):
                raise ValueError(f"invalid timestamp {timestamp!r}")
            return cls(
                timestamp=timestamp,
                price=_parse_decimal(data["price"]),
                size=_parse_decimal(data["size"]),
                side=TradeSide.parse(data["side"]),
                outcome=Outcome.parse(data["outcome"]),
            )
        except KeyError as exc:
            raise ValueError(f"missing field {exc.args[0]!r}") from None


def load_trades(path: Union[str, Path]) -> List[Trade]:
    """Read a cached trade file: a JSON array of trade objects.

    Raises OSError if the file cannot be read and ValueError if it is malformed.
    """
    data = json.loads(Path(path).read_bytes())
    if not isinstance(data, list):
        raise ValueError("trade file must hold a JSON array")
    return [Trade.from_dict(item) for item in data]