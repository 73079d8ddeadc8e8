"""Measure how often a $0.01 price bounced to a target within the same window."""

from __future__ import annotations

import argparse
import math
import re
import sys
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, TextIO, Tuple

from polywatch.tradefile import Outcome, Trade, load_trades

WINDOW_SECS = 300
_TIMESTAMP_STEM = re.compile(r"[+-]?\d+")
_BAR = "▇"


@dataclass
class WindowStats:
    """Price range and first bounce of one side of one window."""

    window_ts: int
    side: str
    trade_count: int
    min_price: float = sys.float_info.max
    max_price: float = -sys.float_info.max
    # A trade at or below the entry price was later followed by one at or
    # above the bounce target.
    has_bounce: bool = False
    bounce_secs: Optional[int] = None
    bounce_magnitude: float = 0.0


@dataclass
class BounceEvent:
    """An entry at a low price followed by a trade at the bounce target."""

    entry_ts: int
    entry_price: float
    bounce_ts: int
    bounce_price: float
    max_price_in_bounce: float
    window_progress_pct: float


def analyze_side(
    window_ts: int,
    side: str,
    trades: Sequence[Trade],
    entry_max: float = 0.011,
    bounce_to: float = 0.02,
) -> Tuple[WindowStats, List[BounceEvent]]:
    """Walk time-ordered trades of one side and record every bounce.

    A trade at or below `entry_max` opens an entry; a later trade at or above
    `bounce_to` starts a bounce, whose peak is tracked until the price falls
    back into the entry range, which closes it and opens a fresh entry.
    """
    stats = WindowStats(window_ts=window_ts, side=side, trade_count=len(trades))
    events: List[BounceEvent] = []
    entry: Optional[Tuple[int, float]] = None
    pending: Optional[BounceEvent] = None

    for trade in trades:
        price = float(trade.price)
        stats.min_price = min(stats.min_price, price)
        stats.max_price = max(stats.max_price, price)

        if entry is None and price <= entry_max:
            entry = (trade.timestamp, price)
        if entry is None:
            continue

        if price >= bounce_to:
            if pending is None:
                elapsed = min(max(trade.timestamp - window_ts, 0), WINDOW_SECS)
                pending = BounceEvent(
                    entry_ts=entry[0],
                    entry_price=entry[1],
                    bounce_ts=trade.timestamp,
                    bounce_price=price,
                    max_price_in_bounce=price,
                    window_progress_pct=100.0 * elapsed / WINDOW_SECS,
                )
            elif price > pending.max_price_in_bounce:
                pending.max_price_in_bounce = price
        elif price <= entry_max and pending is not None:
            events.append(pending)
            pending = None
            entry = (trade.timestamp, price)

    if pending is not None:
        events.append(pending)

    if events:
        first = events[0]
        stats.has_bounce = True
        stats.bounce_secs = first.bounce_ts - first.entry_ts
        stats.bounce_magnitude = first.bounce_price - first.entry_price
    return stats, events


def _utc(ts: int) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(ts, timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _display_float(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _ratio_pct(num: int, denom: int) -> float:
    return 100.0 * num / denom if denom > 0 else 0.0


def _sides(trades: Sequence[Trade]) -> Tuple[List[Trade], List[Trade]]:
    up = sorted((t for t in trades if t.outcome is Outcome.UP), key=lambda t: t.timestamp)
    down = sorted((t for t in trades if t.outcome is Outcome.DOWN), key=lambda t: t.timestamp)
    return up, down


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="poly-scalp-analyze",
        description="Analyze cached trade history for $0.01 bounce opportunities",
    )
    parser.add_argument("--cache-dir", type=Path, default=None,
                        help="Cache root (default: ~/.poly-backtest-cache)")
    parser.add_argument("--days", type=int, default=2,
                        help="Look back this many days from now")
    parser.add_argument("--bounce-to", type=float, default=0.02,
                        help="Bounce target price")
    parser.add_argument("--entry-max", type=float, default=0.011,
                        help="Maximum entry price")
    return parser


def _list_windows(trades_dir: Path, cutoff: int) -> List[Tuple[int, Path]]:
    entries = []
    for path in trades_dir.iterdir():
        stem = path.stem
        if not _TIMESTAMP_STEM.fullmatch(stem):
            continue
        ts = int(stem)
        if ts >= cutoff:
            entries.append((ts, path))
    entries.sort(key=lambda item: item[0])
    return entries


def _print_histograms(
    out: TextIO,
    mag_buckets: List[int],
    time_buckets: List[int],
    bounces_per_window: Counter,
) -> None:
    print("=== Bounce magnitude histogram (max price reached) ===", file=out)
    mag_total = sum(mag_buckets)
    for i, n in enumerate(mag_buckets):
        lo = (i + 1) / 100.0
        hi = (i + 2) / 100.0
        share = _ratio_pct(n, mag_total)
        bar = _BAR * int(share / 2.0)
        print(f"  +${lo:.2f}-${hi:.2f}: {n:4d} ({share:.1f}%) {bar}", file=out)

    print(file=out)
    print("=== Bounce timing within window (entry trade time) ===", file=out)
    t_total = sum(time_buckets)
    for i, n in enumerate(time_buckets):
        share = _ratio_pct(n, t_total)
        bar = _BAR * int(share / 2.0)
        print(f"  {i * 10:3d}%-{(i + 1) * 10:3d}% window: {n:4d} ({share:.1f}%) {bar}",
              file=out)

    print(file=out)
    print("=== Bounces per window distribution ===", file=out)
    for count in sorted(bounces_per_window):
        print(f"  {count} bounces: {bounces_per_window[count]} windows", file=out)


def _print_pnl(out: TextIO, bounce_count: int, bounce_to: float) -> None:
    print("=== Naive PnL simulation (per bounce captured) ===", file=out)
    entry_avg = 0.01
    shares_per_trade = 100.0
    per_bounce_profit = (bounce_to - entry_avg) * shares_per_trade
    # Worst case: the buy filled, the sell did not, and the position lost.
    per_bounce_loss = entry_avg * shares_per_trade
    print(f"  Assume $1 capital per bounce: {_display_float(shares_per_trade)} shares "
          f"× ${_display_float(entry_avg)}", file=out)
    print(f"  Best case (TP fills): +${per_bounce_profit:.2f} per bounce", file=out)
    print(f"  Worst case (no SELL, position loses): -${per_bounce_loss:.2f}", file=out)
    for fill_rate in (0.10, 0.25, 0.50, 0.75, 1.00):
        captured = bounce_count * fill_rate
        est_pnl = captured * per_bounce_profit
        print(f"  Fill rate {fill_rate * 100.0:>4.0f}% → captured {captured:.0f}/"
              f"{bounce_count} bounces → ${est_pnl:.2f}", file=out)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parser().parse_args(argv)
    out = sys.stdout
    err = sys.stderr

    cache_root = args.cache_dir
    if cache_root is None:
        try:
            cache_root = Path.home() / ".poly-backtest-cache"
        except RuntimeError:
            print("Error: can't determine cache dir", file=err)
            return 1
    trades_dir = Path(cache_root) / "trades"

    now = int(datetime.now(timezone.utc).timestamp())
    cutoff = now - args.days * 24 * 3600
    try:
        entries = _list_windows(trades_dir, cutoff)
    except OSError as exc:
        print(f"Error: read {trades_dir}: {exc}", file=err)
        return 1

    cutoff_dt = _utc(cutoff)
    since = cutoff_dt.strftime("%Y-%m-%d %H:%M:%S UTC") if cutoff_dt else str(cutoff)
    print(f"Analyzing {len(entries)} windows (last {args.days} days, since {since})",
          file=out)
    print(f"Entry: trade at <= ${args.entry_max:.3f}, "
          f"bounce target: trade at >= ${args.bounce_to:.3f}", file=out)
    print(file=out)

    up_entries = down_entries = up_bounces = down_bounces = 0
    all_events: List[BounceEvent] = []
    mag_buckets = [0] * 10
    time_buckets = [0] * 10
    bounces_per_window: Counter = Counter()
    # date -> [windows, up bounces, down bounces]
    by_day: Dict[str, List[int]] = {}

    for ts, path in entries:
        moment = _utc(ts)
        date = moment.strftime("%Y-%m-%d") if moment else str(ts)
        day = by_day.setdefault(date, [0, 0, 0])
        try:
            trades = load_trades(path)
        except (OSError, ValueError):
            continue
        up, down = _sides(trades)
        up_stats, up_events = analyze_side(ts, "UP", up, args.entry_max, args.bounce_to)
        down_stats, down_events = analyze_side(
            ts, "DOWN", down, args.entry_max, args.bounce_to
        )

        up_entries += up_stats.min_price <= args.entry_max
        down_entries += down_stats.min_price <= args.entry_max
        up_bounces += up_stats.has_bounce
        down_bounces += down_stats.has_bounce
        day[0] += 1
        day[1] += up_stats.has_bounce
        day[2] += down_stats.has_bounce

        bounces_per_window[len(up_events) + len(down_events)] += 1
        for event in up_events + down_events:
            rise = math.floor((event.max_price_in_bounce - event.entry_price) * 100.0)
            mag_buckets[min(max(rise, 1), 9) - 1] += 1
            decile = math.floor(event.window_progress_pct / 10.0)
            time_buckets[min(max(decile, 0), 9)] += 1
            all_events.append(event)

    bounce_count = len(all_events)
    total_windows = len(entries)
    print(f"=== Aggregate ({total_windows} windows analyzed) ===", file=out)
    print(f"UP   side: {up_entries}/{total_windows} windows hit entry, "
          f"{up_bounces}/{up_entries} ({_ratio_pct(up_bounces, up_entries):.1f}%) "
          "had a bounce", file=out)
    print(f"DOWN side: {down_entries}/{total_windows} windows hit entry, "
          f"{down_bounces}/{down_entries} ({_ratio_pct(down_bounces, down_entries):.1f}%) "
          "had a bounce", file=out)
    print(file=out)

    if bounce_count > 0:
        secs_sum = sum(e.bounce_ts - e.entry_ts for e in all_events)
        first_sum = sum(e.bounce_price - e.entry_price for e in all_events)
        max_sum = sum(e.max_price_in_bounce - e.entry_price for e in all_events)
        print("Bounce stats:", file=out)
        print(f"  Total bounces: {bounce_count}", file=out)
        print(f"  Avg time entry→bounce: {secs_sum // bounce_count} seconds", file=out)
        print(f"  Avg bounce magnitude (first cross): ${first_sum / bounce_count:.3f}",
              file=out)
        print(f"  Avg max bounce magnitude:           ${max_sum / bounce_count:.3f}",
              file=out)
        print(file=out)
        _print_histograms(out, mag_buckets, time_buckets, bounces_per_window)
        print(file=out)
        _print_pnl(out, bounce_count, args.bounce_to)

    print(file=out)
    print("=== Per-day breakdown ===", file=out)
    for date in sorted(by_day):
        windows, up_b, down_b = by_day[date]
        total_b = up_b + down_b
        share = f"{100.0 * total_b / windows:.1f}" if windows else "NaN"
        print(f"  {date}: {windows} windows | UP bounces: {up_b} | "
              f"DOWN bounces: {down_b} | Total: {total_b} ({share}% of windows)",
              file=out)
    return 0