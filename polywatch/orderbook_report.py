"""HTML dashboard over recorded order book snapshots and cached trades."""

from __future__ import annotations

import argparse
import json
import math
import sqlite3
import sys
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from polywatch.tradefile import TradeSide, load_trades

PathLike = Union[str, Path]

# Volatility bucket edges (std-dev in dollars).
VOL_EDGES = (0.0, 0.02, 0.05, 0.10, 0.20, math.inf)
VOL_LABELS = ("$0.00-0.02", "$0.02-0.05", "$0.05-0.10", "$0.10-0.20", "$0.20+")

PHASE_BUCKETS = 20
ACTIVE_END_SECS = 240
LATE_END_SECS = 300

CHART_JS_SRC = "https://cdn.jsdelivr.net/npm/chart.js@4.4.0/dist/chart.umd.min.js"


@dataclass(frozen=True)
class Snapshot:
    ts: int
    window_ts: int
    outcome: str
    best_bid: Optional[float]
    best_ask: Optional[float]


@dataclass
class WindowOutcomeStats:
    """Running moments of best_ask for one (window, outcome)."""

    n: int = 0
    sum: float = 0.0
    sum_sq: float = 0.0

    def push(self, x: float) -> None:
        self.n += 1
        self.sum += x
        self.sum_sq += x * x

    def std_dev(self) -> Optional[float]:
        """Population standard deviation; None with fewer than two samples."""
        if self.n < 2:
            return None
        mean = self.sum / self.n
        var = self.sum_sq / self.n - mean * mean
        return math.sqrt(max(var, 0.0))


def _bucket_index(ask: float) -> int:
    scaled = ask * PHASE_BUCKETS
    if math.isnan(scaled):
        return 0
    if math.isinf(scaled):
        return PHASE_BUCKETS - 1 if scaled > 0 else 0
    return min(max(math.floor(scaled), 0), PHASE_BUCKETS - 1)


@dataclass
class PhaseBuckets:
    """Counts of best_ask values in $0.05 buckets from $0.00 to $1.00."""

    counts: List[int] = field(default_factory=lambda: [0] * PHASE_BUCKETS)
    total: int = 0

    def push_ask(self, ask: float) -> None:
        self.counts[_bucket_index(ask)] += 1
        self.total += 1

    def pct(self) -> List[float]:
        if self.total == 0:
            return [0.0] * PHASE_BUCKETS
        return [100.0 * c / self.total for c in self.counts]


@dataclass
class VolDist:
    up: List[int] = field(default_factory=lambda: [0] * len(VOL_LABELS))
    down: List[int] = field(default_factory=lambda: [0] * len(VOL_LABELS))


@dataclass
class PhaseDist:
    active: PhaseBuckets = field(default_factory=PhaseBuckets)
    late: PhaseBuckets = field(default_factory=PhaseBuckets)
    resolution: PhaseBuckets = field(default_factory=PhaseBuckets)


@dataclass(frozen=True)
class WindowAnalysis:
    window_ts: int
    # Active-phase ask reached $0.01 (best_ask <= 0.011).
    ask_hit_1c: bool
    # Active-phase bid reached $0.03 (best_bid >= 0.029).
    bid_hit_3c: bool
    # Sell volume at <= $0.011 in the active phase.
    sell_vol_1c_active: float
    # Buy volume at $0.02..$0.05 in the active phase.
    buy_vol_2to5c_active: float


@dataclass(frozen=True)
class AggregateSummary:
    total_windows: int
    windows_ask_1c: int
    windows_bid_3c: int
    windows_both: int
    sum_sell_vol_1c: float
    sum_buy_vol_2to5c: float


def vol_bucket(sd: float) -> int:
    """Index of the volatility bucket holding `sd`."""
    for i in range(len(VOL_LABELS)):
        if VOL_EDGES[i] <= sd < VOL_EDGES[i + 1]:
            return i
    return len(VOL_LABELS) - 1


def _home() -> Path:
    try:
        return Path.home()
    except RuntimeError:
        return Path(".")


def default_db_path() -> Path:
    return _home() / ".poly-orderbook" / "recorder.db"


def default_cache_dir() -> Path:
    return _home() / ".poly-backtest-cache"


def load_snapshots(db_path: PathLike) -> List[Snapshot]:
    """Read all snapshots, read-only, ordered by window then time."""
    uri = Path(db_path).resolve().as_uri() + "?mode=ro"
    conn = sqlite3.connect(uri, uri=True)
    try:
        rows = conn.execute(
            "SELECT ts, window_ts, outcome, best_bid, best_ask "
            "FROM orderbook_snapshots ORDER BY window_ts, ts"
        ).fetchall()
    finally:
        conn.close()
    return [Snapshot(*row) for row in rows]


def compute_volatility(snaps: Sequence[Snapshot]) -> VolDist:
    by_key: Dict[Tuple[int, str], WindowOutcomeStats] = defaultdict(WindowOutcomeStats)
    for s in snaps:
        if s.best_ask is not None:
            by_key[(s.window_ts, s.outcome)].push(s.best_ask)
    dist = VolDist()
    for (_, outcome), stats in sorted(by_key.items()):
        sd = stats.std_dev()
        if sd is None:
            continue
        target = dist.up if outcome == "Up" else dist.down
        target[vol_bucket(sd)] += 1
    return dist


def compute_phase_distribution(snaps: Sequence[Snapshot]) -> PhaseDist:
    dist = PhaseDist()
    for s in snaps:
        if s.best_ask is None:
            continue
        progress = s.ts - s.window_ts
        if progress < 0:
            continue
        if progress < ACTIVE_END_SECS:
            dist.active.push_ask(s.best_ask)
        elif progress < LATE_END_SECS:
            dist.late.push_ask(s.best_ask)
        else:
            dist.resolution.push_ask(s.best_ask)
    return dist


def compute_window_analyses(
    snaps: Sequence[Snapshot], cache_dir: PathLike
) -> List[WindowAnalysis]:
    """Per-window hit flags from snapshots plus fill-volume proxies from trades."""
    by_window: Dict[int, List[Snapshot]] = defaultdict(list)
    for s in snaps:
        by_window[s.window_ts].append(s)

    trades_dir = Path(cache_dir) / "trades"
    out: List[WindowAnalysis] = []
    for window_ts in sorted(by_window):
        active = [
            s for s in by_window[window_ts] if 0 <= s.ts - window_ts < ACTIVE_END_SECS
        ]
        ask_hit = any(s.best_ask is not None and s.best_ask <= 0.011 for s in active)
        bid_hit = any(s.best_bid is not None and s.best_bid >= 0.029 for s in active)

        sell_vol = 0.0
        buy_vol = 0.0
        try:
            trades = load_trades(trades_dir / f"{window_ts}.json")
        except (OSError, ValueError):
            trades = []
        for t in trades:
            if not 0 <= t.timestamp - window_ts < ACTIVE_END_SECS:
                continue
            price = float(t.price)
            size = float(t.size)
            if t.side is TradeSide.SELL and price <= 0.011:
                sell_vol += size
            elif t.side is TradeSide.BUY and 0.019 <= price <= 0.051:
                buy_vol += size

        out.append(
            WindowAnalysis(
                window_ts=window_ts,
                ask_hit_1c=ask_hit,
                bid_hit_3c=bid_hit,
                sell_vol_1c_active=sell_vol,
                buy_vol_2to5c_active=buy_vol,
            )
        )
    return out


def build_summary(analyses: Sequence[WindowAnalysis]) -> AggregateSummary:
    return AggregateSummary(
        total_windows=len(analyses),
        windows_ask_1c=sum(a.ask_hit_1c for a in analyses),
        windows_bid_3c=sum(a.bid_hit_3c for a in analyses),
        windows_both=sum(a.ask_hit_1c and a.bid_hit_3c for a in analyses),
        sum_sell_vol_1c=sum(a.sell_vol_1c_active for a in analyses),
        sum_buy_vol_2to5c=sum(a.buy_vol_2to5c_active for a in analyses),
    )


def pct(num: int, denom: int) -> float:
    return 0.0 if denom == 0 else 100.0 * num / denom


def _utc(ts: int) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(ts, timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _json(value: object) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


_STYLES = """<style>
:root {--bg:#0d1117;--bg-elev:#161b22;--bg-hover:#1f2937;--border:#30363d;
--text:#e6edf3;--text-dim:#8b949e;--accent:#58a6ff;
--positive:#3fb950;--negative:#f85149;--warning:#d29922;}
*{box-sizing:border-box}
body{font-family:-apple-system,BlinkMacSystemFont,"Segoe UI",sans-serif;background:var(--bg);color:var(--text);margin:0;padding:24px;line-height:1.5;font-size:14px}
.container{max-width:1280px;margin:0 auto}
header{border-bottom:1px solid var(--border);padding-bottom:16px;margin-bottom:24px}
h1{margin:0 0 8px 0;font-size:22px;font-weight:600}
h2{margin:32px 0 12px 0;font-size:16px;font-weight:600;border-bottom:1px solid var(--border);padding-bottom:8px}
.meta{color:var(--text-dim);font-size:13px;display:flex;gap:24px;flex-wrap:wrap}
.meta strong{color:var(--text)}
.cards{display:grid;grid-template-columns:repeat(auto-fit,minmax(220px,1fr));gap:12px;margin:16px 0}
.card{background:var(--bg-elev);border:1px solid var(--border);border-radius:6px;padding:14px 16px}
.card .label{color:var(--text-dim);font-size:12px;text-transform:uppercase;letter-spacing:0.04em}
.card .value{font-size:22px;font-weight:600;font-variant-numeric:tabular-nums;margin-top:4px}
.card .sub{color:var(--text-dim);font-size:12px;margin-top:2px}
.chart-card{background:var(--bg-elev);border:1px solid var(--border);border-radius:6px;padding:16px;margin-bottom:16px}
.chart-container{position:relative;height:360px}
.caption{color:var(--text-dim);font-size:0.9em;margin:-0.5em 0 0.8em 0}
footer{margin-top:48px;padding-top:16px;border-top:1px solid var(--border);color:var(--text-dim);font-size:12px;text-align:center}
</style>"""

_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<title>Polymarket Orderbook Report</title>
<script src="{chart_js}"></script>
{styles}
</head>
<body>
<div class="container">

<header>
  <h1>Polymarket Orderbook Report</h1>
  <div class="meta">
    <span><strong>DB:</strong> {db}</span>
    <span><strong>Range:</strong> {start} → {end}</span>
    <span><strong>Generated:</strong> {generated}</span>
  </div>
</header>

<h2>Summary</h2>
<div class="cards">
  <div class="card"><div class="label">Windows analyzed</div>
    <div class="value">{total_windows}</div></div>
  <div class="card"><div class="label">Active ask hit $0.01</div>
    <div class="value">{ask_1c}</div>
    <div class="sub">{ask_pct}% of windows</div></div>
  <div class="card"><div class="label">Active bid hit $0.03</div>
    <div class="value">{bid_3c}</div>
    <div class="sub">{bid_pct}% of windows</div></div>
  <div class="card"><div class="label">Both in same window</div>
    <div class="value">{both}</div>
    <div class="sub">{both_pct}% — complete scalp opportunity</div></div>
  <div class="card"><div class="label">Σ sell-vol @ $0.01 (active)</div>
    <div class="value">{sell_vol}</div>
    <div class="sub">shares — upper bound on filled BUY</div></div>
  <div class="card"><div class="label">Σ buy-vol @ $0.02-$0.05 (active)</div>
    <div class="value">{buy_vol}</div>
    <div class="sub">shares — upper bound on filled SELL</div></div>
</div>

<h2>Best-ask volatility per window-token (std dev)</h2>
<p class="caption">Per (window, outcome): standard deviation of best_ask across all snapshots in the window. Up vs Down side compared.</p>
<div class="chart-card"><div class="chart-container"><canvas id="vol"></canvas></div></div>

<h2>best_ask distribution by window phase</h2>
<p class="caption">% of snapshots in each phase where best_ask fell into a $0.05 bucket. Shows price concentration at $0.01 / $0.99 during resolution vs active.</p>
<div class="chart-card"><div class="chart-container"><canvas id="phase"></canvas></div></div>

<h2>Maker fill-volume estimate per window (active phase only)</h2>
<p class="caption">Per window, total taker-side volume at our hypothetical maker levels during the 0-240s active phase. Sell-vol at $0.01 estimates BUY fills; Buy-vol at $0.02-$0.05 estimates SELL fills. Last {fill_n} windows shown.</p>
<div class="chart-card"><div class="chart-container"><canvas id="fill"></canvas></div></div>

<footer>poly-orderbook-report — analysis of {total_windows} windows from {db}.</footer>

</div>

<script>
const volData   = {vol_json};
const phaseData = {phase_json};
const fillData  = {fill_json};

new Chart(document.getElementById('vol'), {{
  type: 'bar', data: volData,
  options: {{ responsive: true, maintainAspectRatio: false,
    plugins: {{ legend: {{ position: 'top', labels: {{ color: '#e6edf3' }} }} }},
    scales: {{
      x: {{ grid: {{ display: false }}, ticks: {{ color: '#8b949e' }}, title: {{ display: true, text: 'std-dev of best_ask ($)', color: '#8b949e' }} }},
      y: {{ grid: {{ color: '#21262d' }}, ticks: {{ color: '#8b949e' }}, title: {{ display: true, text: 'window count', color: '#8b949e' }} }}
    }}
  }}
}});

new Chart(document.getElementById('phase'), {{
  type: 'bar', data: phaseData,
  options: {{ responsive: true, maintainAspectRatio: false,
    plugins: {{ legend: {{ position: 'top', labels: {{ color: '#e6edf3' }} }} }},
    scales: {{
      x: {{ grid: {{ display: false }}, ticks: {{ color: '#8b949e', maxRotation: 60, minRotation: 60, font: {{ size: 10 }} }}, title: {{ display: true, text: 'best_ask bucket', color: '#8b949e' }} }},
      y: {{ grid: {{ color: '#21262d' }}, ticks: {{ color: '#8b949e', callback: v => v+'%' }}, title: {{ display: true, text: '% of snapshots in phase', color: '#8b949e' }} }}
    }}
  }}
}});

new Chart(document.getElementById('fill'), {{
  type: 'bar', data: fillData,
  options: {{ responsive: true, maintainAspectRatio: false,
    plugins: {{ legend: {{ position: 'top', labels: {{ color: '#e6edf3' }} }} }},
    scales: {{
      x: {{ grid: {{ display: false }}, ticks: {{ color: '#8b949e', maxRotation: 60, minRotation: 60, font: {{ size: 10 }} }} }},
      y: {{ grid: {{ color: '#21262d' }}, ticks: {{ color: '#8b949e' }}, title: {{ display: true, text: 'shares', color: '#8b949e' }} }}
    }}
  }}
}});
</script>
</body>
</html>"""


def render_html(
    summary: AggregateSummary,
    vol: VolDist,
    phase: PhaseDist,
    analyses: Sequence[WindowAnalysis],
    fill_window_limit: int,
    db_path: PathLike,
    generated_at: Optional[datetime] = None,
) -> str:
    """Render the self-contained dashboard page."""
    vol_json = {
        "labels": list(VOL_LABELS),
        "datasets": [
            {"label": "Up", "data": list(vol.up), "backgroundColor": "#58a6ff"},
            {"label": "Down", "data": list(vol.down), "backgroundColor": "#f85149"},
        ],
    }
    phase_json = {
        "labels": [f"${i * 0.05:.2f}" for i in range(PHASE_BUCKETS)],
        "datasets": [
            {"label": "Active (0-240s)", "data": phase.active.pct(),
             "backgroundColor": "rgba(63,185,80,0.7)"},
            {"label": "Late-active (240-300s)", "data": phase.late.pct(),
             "backgroundColor": "rgba(210,153,34,0.7)"},
            {"label": "Resolution (300s+)", "data": phase.resolution.pct(),
             "backgroundColor": "rgba(248,81,73,0.7)"},
        ],
    }

    take_from = max(len(analyses) - fill_window_limit, 0)
    recent = list(analyses[take_from:])

    def fill_label(ts: int) -> str:
        moment = _utc(ts)
        return moment.strftime("%m-%d %H:%M") if moment else str(ts)

    fill_json = {
        "labels": [fill_label(a.window_ts) for a in recent],
        "datasets": [
            {"label": "Sell-vol at <=$0.01 (would-fill our $0.01 BUY)",
             "data": [a.sell_vol_1c_active for a in recent],
             "backgroundColor": "#3fb950"},
            {"label": "Buy-vol at $0.02-$0.05 (would-fill our $0.02 SELL)",
             "data": [a.buy_vol_2to5c_active for a in recent],
             "backgroundColor": "#d29922"},
        ],
    }

    generated = (generated_at or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M UTC")

    def range_label(ts: int) -> str:
        moment = _utc(ts)
        return moment.strftime("%Y-%m-%d %H:%M UTC") if moment else ""

    if analyses:
        start, end = range_label(analyses[0].window_ts), range_label(analyses[-1].window_ts)
    else:
        start, end = "-", "-"

    total = summary.total_windows
    return _TEMPLATE.format(
        chart_js=CHART_JS_SRC,
        styles=_STYLES,
        db=str(db_path),
        start=start,
        end=end,
        generated=generated,
        total_windows=total,
        ask_1c=summary.windows_ask_1c,
        ask_pct=f"{pct(summary.windows_ask_1c, total):.1f}",
        bid_3c=summary.windows_bid_3c,
        bid_pct=f"{pct(summary.windows_bid_3c, total):.1f}",
        both=summary.windows_both,
        both_pct=f"{pct(summary.windows_both, total):.1f}",
        sell_vol=f"{summary.sum_sell_vol_1c:.0f}",
        buy_vol=f"{summary.sum_buy_vol_2to5c:.0f}",
        fill_n=len(recent),
        vol_json=_json(vol_json),
        phase_json=_json(phase_json),
        fill_json=_json(fill_json),
    )


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="poly-orderbook-report",
        description="Generate self-contained HTML dashboard from orderbook snapshots + trade cache",
    )
    parser.add_argument("--db-path", type=Path, default=None,
                        help="SQLite DB path (default: ~/.poly-orderbook/recorder.db)")
    parser.add_argument("--output", type=Path, default=Path("report-orderbook.html"),
                        help="Output HTML path")
    parser.add_argument("--cache-dir", type=Path, default=None,
                        help="Trade cache root (default: ~/.poly-backtest-cache)")
    parser.add_argument("--fill-chart-windows", type=int, default=20,
                        help="Limit the per-window fill chart to the last N windows")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parser().parse_args(argv)
    db_path = args.db_path or default_db_path()
    cache_dir = args.cache_dir or default_cache_dir()
    err = sys.stderr

    print(f"Loading snapshots from {db_path} (read-only)...", file=err)
    try:
        snaps = load_snapshots(db_path)
    except sqlite3.Error as exc:
        print(f"Error: open read-only {db_path}: {exc}", file=err)
        return 1
    print(f"  loaded {len(snaps)} snapshots", file=err)

    vol = compute_volatility(snaps)
    phase = compute_phase_distribution(snaps)
    analyses = compute_window_analyses(snaps, cache_dir)
    summary = build_summary(analyses)
    total = summary.total_windows

    print("Summary:", file=err)
    print(f"  windows analyzed:        {total}", file=err)
    print(f"  active ask hit $0.01:    {summary.windows_ask_1c} "
          f"({pct(summary.windows_ask_1c, total):.1f}%)", file=err)
    print(f"  active bid hit $0.03:    {summary.windows_bid_3c} "
          f"({pct(summary.windows_bid_3c, total):.1f}%)", file=err)
    print(f"  both in same window:     {summary.windows_both} "
          f"({pct(summary.windows_both, total):.1f}%)", file=err)
    print(f"  Σ sell-vol @ $0.01:      {summary.sum_sell_vol_1c:.0f} shares", file=err)
    print(f"  Σ buy-vol @ $0.02-0.05:  {summary.sum_buy_vol_2to5c:.0f} shares", file=err)

    html = render_html(summary, vol, phase, analyses, args.fill_chart_windows, db_path)
    try:
        Path(args.output).write_text(html, encoding="utf-8")
    except OSError as exc:
        print(f"Error: write {args.output}: {exc}", file=err)
        return 1
    print(f"Wrote {args.output}", file=err)
    return 0