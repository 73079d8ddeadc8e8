"""Open positions and the interfaces that fetch and cache them."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from polywatch.domain import _format_timestamp, _parse_decimal, _parse_timestamp

# Production Redis key for the latest positions snapshot.
POSITIONS_KEY = "poly:prod:positions"


class Side(Enum):
    UP = "Up"
    DOWN = "Down"

    @classmethod
    def parse(cls, text: str) -> Optional["Side"]:
        """Parse an outcome string; None when it is not an up/down outcome."""
        return {"up": cls.UP, "down": cls.DOWN}.get(text.lower())


@dataclass(frozen=True)
class Position:
    token_id: str
    side: Side
    market_slug: str
    shares: Decimal
    avg_price: Decimal  # USDC paid per share
    current_price: Decimal  # current bid

    def cost_usd(self) -> Decimal:
        return self.avg_price * self.shares

    def value_usd(self) -> Decimal:
        return self.current_price * self.shares

    def pnl_pct(self) -> Decimal:
        """Percent gain or loss versus cost; zero when the cost is zero."""
        cost = self.cost_usd()
        if cost.is_zero():
            return Decimal(0)
        return (self.value_usd() - cost) / cost * Decimal(100)

    def to_dict(self) -> dict:
        return {
            "token_id": self.token_id,
            "side": self.side.value,
            "market_slug": self.market_slug,
            "shares": str(self.shares),
            "avg_price": str(self.avg_price),
            "current_price": str(self.current_price),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Position":
        """Build a position from its dict form; raises ValueError if malformed."""
        if not isinstance(data, Mapping):
            raise ValueError("position must be an object")
        try:
            token_id = data["token_id"]
            market_slug = data["market_slug"]
            if not isinstance(token_id, str) or not isinstance(market_slug, str):
                raise ValueError("token_id and market_slug must be strings")
            return cls(
                token_id=token_id,
                side=Side(data["side"]),
                market_slug=market_slug,
                shares=_parse_decimal(data["shares"]),
                avg_price=_parse_decimal(data["avg_price"]),
                current_price=_parse_decimal(data["current_price"]),
            )
        except KeyError as exc:
            raise ValueError(f"missing field {exc.args[0]!r}") from None


@dataclass(frozen=True)
class Positions:
    items: Tuple[Position, ...]
    fetched_at: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))

    def to_json(self) -> str:
        return json.dumps(
            {
                "items": [p.to_dict() for p in self.items],
                "fetched_at": _format_timestamp(self.fetched_at),
            }
        )

    @classmethod
    def from_json(cls, text: str) -> "Positions":
        """Parse the JSON form written by to_json; raises ValueError if malformed."""
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("positions must be a JSON object")
        try:
            items = data["items"]
            fetched_at = data["fetched_at"]
        except KeyError as exc:
            raise ValueError(f"missing field {exc.args[0]!r}") from None
        if not isinstance(items, list):
            raise ValueError("items must be a list")
        return cls(
            items=tuple(Position.from_dict(item) for item in items),
            fetched_at=_parse_timestamp(fetched_at),
        )


class PositionsFetcher(ABC):
    """Source of the current open positions."""

    @abstractmethod
    async def fetch(self) -> Positions:
        """Return a fresh snapshot; raises FetchError on failure."""


class PositionsCache(ABC):
    """Store for the latest positions snapshot."""

    @abstractmethod
    async def get(self) -> Optional[Positions]:
        """Return the cached snapshot, or None; raises CacheError on failure."""

    @abstractmethod
    async def set(self, positions: Positions) -> None:
        """Store a snapshot; raises CacheError on failure."""