# polywatch

Building blocks and two command-line reports for Polymarket's 5-minute BTC
up/down markets:

- refresh loops that keep a wallet balance and open positions cached
  (balance in Redis) and report their health,
- order book state tracking from market-channel WebSocket messages, written
  as best bid / best ask snapshots to SQLite,
- an HTML dashboard over those snapshots and cached trade files,
- a bounce analysis of cached trades, and a live scalp state machine that
  reports what a maker "$0.01 → $0.02+" scalp would have done.

## Installation

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Configuration

`polywatch.config.Config.from_env(environ=None)` reads upper-case variables
from the given mapping, or from `os.environ` when none is given:

| Variable                 | Default                        |
|--------------------------|--------------------------------|
| `POLYMARKET_PRIVATE_KEY` | required                       |
| `REDIS_URL`              | `redis://127.0.0.1:6379`       |
| `REFRESH_INTERVAL_SECS`  | `30`                           |
| `CLOB_HOST`              | `https://clob.polymarket.com`  |
| `LOG_LEVEL`              | `info`                         |
| `POLYGON_RPC_URL`        | `https://polygon-rpc.com`      |

`ConfigError` is raised when the private key is missing, when
`REFRESH_INTERVAL_SECS` is not a non-negative integer, and when `CLOB_HOST`
contains the retired `clob-v2.polymarket.com` host (`validate_clob_host`).

```python
from polywatch.config import Config

cfg = Config.from_env({"POLYMARKET_PRIVATE_KEY": "placeholder"})
assert cfg.refresh_interval_secs == 30
```

## Commands

### poly-orderbook-report

Opens the snapshot database read-only (so a writer can keep going), reads the
cached trade files, and writes a self-contained HTML dashboard with:

1. the distribution of best-ask standard deviation per (window, outcome),
   Up against Down,
2. the best-ask price distribution in $0.05 buckets by window phase
   (active 0–240 s, late-active 240–300 s, resolution 300 s+),
3. per-window fill-volume estimates from trades in the active phase: sell
   volume at ≤ $0.011 and buy volume at $0.019–$0.051.

A summary is also printed to standard error.

```
poly-orderbook-report [--db-path PATH] [--output report-orderbook.html]
                      [--cache-dir PATH] [--fill-chart-windows 20]
```

The database defaults to `~/.poly-orderbook/recorder.db` and the trade cache
to `~/.poly-backtest-cache`. The command returns exit status 1 if the
database cannot be opened or the output cannot be written.

### poly-scalp-analyze

Scans the cache's trade files for windows from the last `--days` days and
reports, per side, how often a trade at or below `--entry-max` was later
followed in the same window by a trade at or above `--bounce-to`. It prints
aggregate hit rates, bounce magnitude and timing histograms, bounces per
window, a naive PnL estimate and a per-day breakdown.

```
poly-scalp-analyze [--cache-dir PATH] [--days 2]
                   [--entry-max 0.011] [--bounce-to 0.02]
```

### Trade files

Both commands read `<cache-dir>/trades/<window_ts>.json`, one file per
window: a JSON array of objects with `timestamp` (integer seconds), `price`
and `size` (numbers or decimal strings), `side` (`Buy`/`Sell`) and `outcome`
(`Up`/`Down`), case-insensitive. `polywatch.tradefile.load_trades` reads them;
unreadable or malformed files are skipped by both commands.

## Library

### Balance and health

```python
from datetime import datetime, timedelta, timezone
from polywatch.domain import HealthLed, RefreshOk

at = datetime(2024, 1, 1, tzinfo=timezone.utc)
led = HealthLed.from_clob_age(RefreshOk(at=at), timedelta(seconds=30),
                              at + timedelta(seconds=60))
assert led is HealthLed.YELLOW
```

The LED is green while the last successful refresh is younger than 1.5× the
interval, yellow up to 3×, and red beyond that, after a `RefreshFailed`, or
with no status yet. `usdc_from_micros` divides a raw 6-decimal amount by
1,000,000. `Balance.to_json` / `Balance.from_json` give the form stored in
Redis.

### Positions

```python
from decimal import Decimal
from polywatch.positions import Position, Side

p = Position(
    token_id="1",
    side=Side.parse("Up"),
    market_slug="btc-updown-5m-1",
    shares=Decimal("10"),
    avg_price=Decimal("0.50"),
    current_price=Decimal("0.485"),
)
assert p.pnl_pct() == Decimal("-3.0")
```

`Side.parse` returns `None` for anything other than up/down. `Positions`
round-trips through `to_json` / `from_json`.

### Refresh loops

- `polywatch.refresher.run(fetcher, cache, cmd_queue, status_queue, interval, shutdown)`
  calls `do_fetch` every `interval` and whenever `Cmd.FORCE_REFRESH` arrives
  on `cmd_queue`. Each fetch writes the balance through a `BalanceCache`
  (for example `polywatch.cache.RedisBalanceCache.connect(url)`, which keeps
  it under `poly:prod:balance:latest`) and puts a `RefreshOk` or
  `RefreshFailed` on `status_queue`.
- `polywatch.positioner.run(fetcher, cache, event_queue, interval, shutdown)`
  fetches once straight away and then every `interval`, writes through a
  `PositionsCache` and puts an `AppEvent` of kind `POSITIONS_UPDATE` on
  `event_queue`. A failed fetch emits nothing; a failed cache write is logged
  and the event is still sent.

Both loops stop when the `asyncio.Event` `shutdown` is set.

### Order book recording

```python
from polywatch.orderbook_recorder import (
    handle_ws_message, open_db, reset_books, write_snapshots,
)

books = {}
reset_books(books, 1700000000, "up-token", "down-token")
handle_ws_message(
    '{"event_type": "book", "asset_id": "up-token",'
    ' "bids": [{"price": "0.45", "size": "50"}], "asks": []}',
    books,
)
conn = open_db("recorder.db")
assert write_snapshots(conn, books, 1700000001) == 2
```

`book` events set the best level of each side; `price_change` events move the
best level only when a better price arrives or the size at the best price
changes. `run_ws_session(asset_ids, books, url)` subscribes to the market
channel, sends a text `PING` every 10 seconds and keeps `books` updated until
the connection ends, then raises `ConnectionError`.

### Live scalp watching

```python
from polywatch.scalp_watch import ScalpMonitor

monitor = ScalpMonitor()
monitor.reset_window(1700000000, "up-token", "down-token")
lines = monitor.handle_message(
    '{"event_type": "book", "asset_id": "up-token",'
    ' "bids": [], "asks": [{"price": "0.01", "size": "100"}]}',
    now=1700000010,
)
print("\n".join(lines))
print(monitor.stats_report())
```

`ScalpParams` holds the thresholds (entry price, bounce target, persistence
seconds, entry cutoff). An entry is confirmed once the ask stays at or below
the entry price, a bounce once the bid stays at or above the target, and an
entry still open 290 seconds into the window counts as a miss.

## What is not included

- No service fetches balances or positions from Polymarket:
  `BalanceFetcher` and `PositionsFetcher` are interfaces to implement, and
  only the balance has a Redis cache (`RedisBalanceCache`).
- No market discovery: the recorder and the scalp monitor need the up/down
  token ids to be supplied, and neither has a command of its own.
- Trade files are not downloaded; they must already be in the cache.
- There is no terminal dashboard, no trading and no order placement.