"""Record best-bid/best-ask snapshots of up/down order books to SQLite."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, MutableMapping, Optional, Tuple, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = logging.getLogger(__name__)

CLOB_WS_URL = "wss://ws-subscriptions-clob.polymarket.com/ws/market"

# The CLOB closes idle connections; a text PING keeps the session alive.
PING_INTERVAL_SECS = 10.0
MAX_BACKOFF_SECS = 60.0

_SCHEMA = """
CREATE TABLE IF NOT EXISTS orderbook_snapshots (
    ts INTEGER NOT NULL,
    token_id TEXT NOT NULL,
    window_ts INTEGER NOT NULL,
    outcome TEXT NOT NULL,
    best_bid REAL,
    best_ask REAL,
    bid_size REAL,
    ask_size REAL,
    PRIMARY KEY (ts, token_id)
);
CREATE INDEX IF NOT EXISTS idx_window ON orderbook_snapshots(window_ts);
CREATE INDEX IF NOT EXISTS idx_ts_outcome ON orderbook_snapshots(ts, outcome);
"""

_INSERT = """
INSERT OR REPLACE INTO orderbook_snapshots
    (ts, token_id, window_ts, outcome, best_bid, best_ask, bid_size, ask_size)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
"""


@dataclass
class BookState:
    """Best level of one token's book and the window it belongs to."""

    best_bid: Optional[float] = None
    best_ask: Optional[float] = None
    bid_size: Optional[float] = None
    ask_size: Optional[float] = None
    window_ts: int = 0
    outcome: str = ""


Books = MutableMapping[str, BookState]


def parse_num(value: Any) -> Optional[float]:
    """Read a JSON number or a numeric string; None for anything else."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        if value != value.strip():
            return None
        try:
            return float(value)
        except ValueError:
            return None
    return None


def best_side(levels: Any, want_max: bool) -> Tuple[Optional[float], Optional[float]]:
    """Return (price, size) of the best level with positive size.

    With `want_max` the highest price wins (best bid), otherwise the lowest
    (best ask). Levels are compared regardless of their order in the list.
    """
    if not isinstance(levels, list):
        return None, None
    best: Optional[Tuple[float, float]] = None
    for level in levels:
        if not isinstance(level, dict):
            continue
        price = parse_num(level.get("price"))
        size = parse_num(level.get("size"))
        if price is None or size is None or size <= 0.0:
            continue
        if best is None or (price > best[0] if want_max else price < best[0]):
            best = (price, size)
    if best is None:
        return None, None
    return best


def _change_levels(changes: Any) -> Iterable[Dict[str, Any]]:
    if isinstance(changes, list):
        return [c for c in changes if isinstance(c, dict)]
    if isinstance(changes, dict):
        return [changes]
    return []


def handle_ws_event(event: Any, books: Books) -> None:
    """Apply one CLOB market-channel event to the tracked books."""
    if not isinstance(event, dict):
        return
    event_type = event.get("event_type")
    asset_id = event.get("asset_id")
    if not isinstance(asset_id, str):
        return
    state = books.get(asset_id)
    if state is None:
        return

    if event_type == "book":
        state.best_bid, state.bid_size = best_side(event.get("bids"), want_max=True)
        state.best_ask, state.ask_size = best_side(event.get("asks"), want_max=False)
    elif event_type == "price_change":
        # Only the best level is tracked: a better price replaces it, a change
        # at the same price updates its size, and a removal leaves it stale
        # until the next full book snapshot corrects it.
        for change in _change_levels(event.get("changes")):
            side = change.get("side")
            price = parse_num(change.get("price"))
            size = parse_num(change.get("size"))
            if price is None or size is None or size <= 0.0:
                continue
            if side == "BUY":
                if state.best_bid is None or price > state.best_bid:
                    state.best_bid, state.bid_size = price, size
                elif state.best_bid == price:
                    state.bid_size = size
            elif side == "SELL":
                if state.best_ask is None or price < state.best_ask:
                    state.best_ask, state.ask_size = price, size
                elif state.best_ask == price:
                    state.ask_size = size


def handle_ws_message(text: str, books: Books) -> None:
    """Apply one text frame, which may hold a single event or an array of them."""
    if text.strip().upper() == "PONG":
        return
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.debug("ws parse err (%s): %s", exc, text[:200])
        return
    events = payload if isinstance(payload, list) else [payload]
    for event in events:
        handle_ws_event(event, books)


def reset_books(books: Books, window_ts: int, up_token_id: str, down_token_id: str) -> None:
    """Replace the tracked books with fresh entries for a new window."""
    books.clear()
    books[up_token_id] = BookState(window_ts=window_ts, outcome="Up")
    books[down_token_id] = BookState(window_ts=window_ts, outcome="Down")


def default_db_path() -> Path:
    """Default database location: ~/.poly-orderbook/recorder.db."""
    try:
        home = Path.home()
    except RuntimeError:
        home = Path(".")
    return home / ".poly-orderbook" / "recorder.db"


def open_db(path: Union[str, Path]) -> sqlite3.Connection:
    """Open (creating if needed) the snapshot database with its schema."""
    db_path = Path(path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    # WAL suits one writer plus ad-hoc readers; NORMAL sync trades a small
    # crash window for much less I/O.
    for pragma in ("PRAGMA journal_mode=WAL", "PRAGMA synchronous=NORMAL"):
        try:
            conn.execute(pragma)
        except sqlite3.Error as exc:
            logger.debug("%s failed: %s", pragma, exc)
    conn.executescript(_SCHEMA)
    return conn


def write_snapshots(conn: sqlite3.Connection, books: Books, ts: int) -> int:
    """Write one row per tracked token at `ts`; returns the rows written.

    Errors are logged rather than raised so recording survives transient
    database problems.
    """
    snapshot = [(token_id, BookState(**vars(state))) for token_id, state in books.items()]
    if not snapshot:
        return 0
    written = 0
    try:
        with conn:
            for token_id, st in snapshot:
                try:
                    conn.execute(
                        _INSERT,
                        (
                            ts,
                            token_id,
                            st.window_ts,
                            st.outcome,
                            st.best_bid,
                            st.best_ask,
                            st.bid_size,
                            st.ask_size,
                        ),
                    )
                    written += 1
                except sqlite3.Error as exc:
                    logger.error("insert %s: %s", token_id, exc)
    except sqlite3.Error as exc:
        logger.error("commit: %s", exc)
        return 0
    return written


def truncate(text: str, limit: int) -> str:
    """Shorten `text` to `limit` characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[:limit] + "…"


async def run_ws_session(
    asset_ids: Iterable[str], books: Books, url: str = CLOB_WS_URL
) -> None:
    """Subscribe to the market channel and keep `books` updated.

    Never returns normally: raises ConnectionError describing why the
    session ended, so the caller can reconnect.
    """
    ids = list(asset_ids)
    logger.info("clob-ws connect: %s (assets=%d)", url, len(ids))
    try:
        ws = await websockets.connect(url)
    except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
        raise ConnectionError(f"connect: {exc}") from exc

    try:
        try:
            await ws.send(json.dumps({"type": "MARKET", "assets_ids": ids}))
        except ConnectionClosed as exc:
            raise ConnectionError(f"subscribe send: {exc}") from exc
        logger.info("clob-ws subscribed")

        loop = asyncio.get_running_loop()
        next_ping = loop.time() + PING_INTERVAL_SECS
        while True:
            remaining = next_ping - loop.time()
            if remaining <= 0:
                try:
                    await ws.send("PING")
                except ConnectionClosed as exc:
                    raise ConnectionError(f"ping send: {exc}") from exc
                next_ping += PING_INTERVAL_SECS
                continue
            try:
                message = await asyncio.wait_for(ws.recv(), timeout=remaining)
            except asyncio.TimeoutError:
                continue
            except ConnectionClosed as exc:
                raise ConnectionError(f"stream closed: {exc}") from exc
            if isinstance(message, str):
                handle_ws_message(message, books)
    finally:
        await ws.close()


async def _run_ws_forever(
    asset_ids: Iterable[str], books: Books, url: str = CLOB_WS_URL
) -> None:
    """Keep a session alive, reconnecting with exponential backoff."""
    ids = list(asset_ids)
    backoff = 1.0
    while True:
        try:
            await run_ws_session(ids, books, url)
        except ConnectionError as exc:
            logger.warning("clob-ws session ended: %s; reconnecting in %ss", exc, backoff)
        await asyncio.sleep(backoff)
        backoff = min(backoff * 2, MAX_BACKOFF_SECS)