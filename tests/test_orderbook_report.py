import json
import math
import sqlite3
from datetime import datetime, timezone

import pytest

from polywatch.orderbook_recorder import open_db
from polywatch.orderbook_report import (
    AggregateSummary,
    PhaseBuckets,
    PhaseDist,
    Snapshot,
    VolDist,
    WindowAnalysis,
    WindowOutcomeStats,
    build_summary,
    compute_phase_distribution,
    compute_volatility,
    compute_window_analyses,
    default_cache_dir,
    default_db_path,
    load_snapshots,
    main,
    pct,
    render_html,
    vol_bucket,
)


def snap(ts, window_ts, outcome, bid, ask):
    return Snapshot(ts=ts, window_ts=window_ts, outcome=outcome, best_bid=bid, best_ask=ask)


def test_vol_bucket_assigns_correctly():
    assert vol_bucket(0.00) == 0
    assert vol_bucket(0.019) == 0
    assert vol_bucket(0.02) == 1
    assert vol_bucket(0.07) == 2
    assert vol_bucket(0.15) == 3
    assert vol_bucket(0.50) == 4


def test_phase_buckets_normalize():
    p = PhaseBuckets()
    p.push_ask(0.01)
    p.push_ask(0.03)
    p.push_ask(0.99)
    pcts = p.pct()
    assert abs(sum(pcts) - 100.0) < 1e-6
    assert pcts[0] > 60.0
    assert pcts[19] > 30.0


def test_phase_buckets_clamp_out_of_range():
    p = PhaseBuckets()
    p.push_ask(1.5)
    p.push_ask(-0.2)
    assert p.counts[19] == 1
    assert p.counts[0] == 1
    assert p.total == 2


def test_phase_buckets_empty_is_all_zero():
    assert PhaseBuckets().pct() == [0.0] * 20


def test_window_outcome_stats_std_dev():
    s = WindowOutcomeStats()
    for x in [0.10, 0.12, 0.08, 0.10, 0.10]:
        s.push(x)
    sd = s.std_dev()
    assert 0.01 < sd < 0.02


def test_window_outcome_stats_needs_two_samples():
    s = WindowOutcomeStats()
    s.push(0.5)
    assert s.std_dev() is None


def test_compute_volatility_groups_by_outcome():
    snaps = [
        snap(100, 100, "Up", None, 0.50),
        snap(101, 100, "Up", None, 0.55),
        snap(102, 100, "Down", None, 0.50),
        snap(103, 100, "Down", None, 0.50),
    ]
    dist = compute_volatility(snaps)
    assert sum(dist.up) == 1
    assert sum(dist.down) == 1
    assert dist.down[0] == 1
    assert dist.up[1] == 1


def test_compute_phase_distribution_splits_by_progress():
    snaps = [
        snap(1000, 1000, "Up", None, 0.5),
        snap(1250, 1000, "Up", None, 0.5),
        snap(1300, 1000, "Up", None, 0.99),
        snap(999, 1000, "Up", None, 0.5),
        snap(1010, 1000, "Up", None, None),
    ]
    d = compute_phase_distribution(snaps)
    assert d.active.total == 1
    assert d.late.total == 1
    assert d.resolution.total == 1
    assert d.resolution.counts[19] == 1


def test_compute_window_analyses_uses_snapshots_and_trades(tmp_path):
    trades_dir = tmp_path / "trades"
    trades_dir.mkdir()
    trades = [
        {"timestamp": 1010, "price": "0.01", "size": "100", "side": "Sell", "outcome": "Up"},
        {"timestamp": 1020, "price": "0.03", "size": "50", "side": "Buy", "outcome": "Up"},
        {"timestamp": 1250, "price": "0.01", "size": "999", "side": "Sell", "outcome": "Up"},
        {"timestamp": 1030, "price": "0.40", "size": "7", "side": "Buy", "outcome": "Down"},
    ]
    (trades_dir / "1000.json").write_text(json.dumps(trades))
    snaps = [
        snap(1005, 1000, "Up", 0.03, 0.01),
        snap(2100, 2000, "Up", 0.02, 0.50),
        snap(2250, 2000, "Up", 0.05, 0.01),
    ]
    analyses = compute_window_analyses(snaps, tmp_path)
    assert [a.window_ts for a in analyses] == [1000, 2000]
    first, second = analyses
    assert first.ask_hit_1c and first.bid_hit_3c
    assert first.sell_vol_1c_active == 100.0
    assert first.buy_vol_2to5c_active == 50.0
    assert not second.ask_hit_1c and not second.bid_hit_3c
    assert second.sell_vol_1c_active == 0.0


def test_build_summary_counts_and_sums():
    analyses = [
        WindowAnalysis(1, True, True, 10.0, 5.0),
        WindowAnalysis(2, True, False, 1.0, 0.0),
        WindowAnalysis(3, False, True, 0.0, 2.0),
    ]
    s = build_summary(analyses)
    assert s == AggregateSummary(3, 2, 2, 1, 11.0, 7.0)


def test_pct_handles_zero_denominator():
    assert pct(3, 0) == 0.0
    assert pct(1, 4) == 25.0


def test_default_paths():
    assert default_db_path().parts[-2:] == (".poly-orderbook", "recorder.db")
    assert default_cache_dir().name == ".poly-backtest-cache"


def test_load_snapshots_orders_rows(tmp_path):
    path = tmp_path / "rec.db"
    conn = open_db(path)
    rows = [
        (2001, "b", 2000, "Down", None, 0.4, None, 3.0),
        (1001, "a", 1000, "Up", 0.45, 0.55, 50.0, 30.0),
    ]
    conn.executemany(
        "INSERT INTO orderbook_snapshots VALUES (?, ?, ?, ?, ?, ?, ?, ?)", rows
    )
    conn.commit()
    conn.close()
    snaps = load_snapshots(path)
    assert snaps == [
        snap(1001, 1000, "Up", 0.45, 0.55),
        snap(2001, 2000, "Down", None, 0.4),
    ]


def test_load_snapshots_missing_db_raises(tmp_path):
    with pytest.raises(sqlite3.Error):
        load_snapshots(tmp_path / "missing.db")


def test_render_html_contains_summary_and_charts():
    analyses = [
        WindowAnalysis(1700000000, True, True, 10.0, 5.0),
        WindowAnalysis(1700000300, False, False, 0.0, 0.0),
        WindowAnalysis(1700000600, True, False, 2.0, 0.0),
    ]
    summary = build_summary(analyses)
    html = render_html(
        summary, VolDist(), PhaseDist(), analyses, 2, "rec.db",
        datetime(2024, 1, 2, 3, 4, tzinfo=timezone.utc),
    )
    assert html.startswith("<!DOCTYPE html>")
    assert "<strong>Generated:</strong> 2024-01-02 03:04 UTC" in html
    assert "Last 2 windows shown" in html
    assert '"$0.00-0.02"' in html
    assert "66.7% of windows" in html
    assert "new Chart(document.getElementById('vol'), {" in html


def test_render_html_empty_range():
    summary = build_summary([])
    html = render_html(summary, VolDist(), PhaseDist(), [], 20, "x.db")
    assert "<strong>Range:</strong> - → -" in html
    assert "Last 0 windows shown" in html


def test_main_writes_report(tmp_path):
    db = tmp_path / "rec.db"
    conn = open_db(db)
    conn.execute(
        "INSERT INTO orderbook_snapshots VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        (1700000005, "a", 1700000000, "Up", 0.03, 0.01, 1.0, 1.0),
    )
    conn.commit()
    conn.close()
    out = tmp_path / "report.html"
    code = main(["--db-path", str(db), "--output", str(out), "--cache-dir", str(tmp_path)])
    assert code == 0
    text = out.read_text(encoding="utf-8")
    assert "Polymarket Orderbook Report" in text
    assert "100.0% — complete scalp opportunity" in text


def test_main_missing_db_fails(tmp_path):
    out = tmp_path / "report.html"
    code = main(["--db-path", str(tmp_path / "none.db"), "--output", str(out)])
    assert code == 1
    assert not out.exists()


def test_vol_bucket_nan_goes_last():
    assert vol_bucket(math.nan) == 4