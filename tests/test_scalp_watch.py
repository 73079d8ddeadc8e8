import json

import pytest

from polywatch.scalp_watch import (
    ScalpMonitor,
    ScalpParams,
    TokenState,
    apply_book,
)

OPEN = 1_000


def book(asset_id, bids=None, asks=None):
    event = {"event_type": "book", "asset_id": asset_id}
    if bids is not None:
        event["bids"] = [{"price": p, "size": "10"} for p in bids]
    if asks is not None:
        event["asks"] = [{"price": p, "size": "10"} for p in asks]
    return json.dumps([event])


@pytest.fixture
def monitor():
    m = ScalpMonitor(params=ScalpParams())
    m.reset_window(OPEN, "up-tok", "down-tok")
    return m


def enter(monitor):
    monitor.handle_message(book("up-tok", bids=["0.005"], asks=["0.01"]), now=OPEN + 10)
    monitor.handle_message(book("up-tok", bids=["0.005"], asks=["0.01"]), now=OPEN + 11)


def test_apply_book_takes_best_levels():
    state = TokenState(label="UP")
    apply_book(
        state,
        {"bids": [{"price": "0.40"}, {"price": "0.45"}, {"price": "0.42"}],
         "asks": [{"price": "0.55"}, {"price": "0.52"}, {"price": "0.60"}]},
    )
    assert state.best_bid == 0.45
    assert state.best_ask == 0.52


def test_apply_book_empty_asks_reads_zero_and_missing_side_kept():
    state = TokenState(best_bid=0.2, best_ask=0.7)
    apply_book(state, {"asks": []})
    assert state.best_ask == 0.0
    assert state.best_bid == 0.2


def test_reset_window_labels_tokens(monitor):
    assert monitor.tokens["up-tok"].label == "UP"
    assert monitor.tokens["down-tok"].label == "DOWN"
    assert monitor.window_open_ts == OPEN


def test_unknown_asset_and_bad_json_ignored(monitor):
    assert monitor.handle_message(book("other", asks=["0.01"]), now=OPEN + 5) == []
    assert monitor.handle_message("not json", now=OPEN + 5) == []
    assert monitor.stats.near_entry_observations == 0


def test_entry_candidate_then_confirmed(monitor):
    first = monitor.handle_message(book("up-tok", asks=["0.01"]), now=OPEN + 10)
    assert any("entry candidate" in line for line in first)
    second = monitor.handle_message(book("up-tok", asks=["0.01"]), now=OPEN + 11)
    assert any("CONFIRMED ENTRY" in line for line in second)
    state = monitor.tokens["up-tok"]
    assert state.in_entry and state.entry_done_this_window
    assert monitor.stats.entries_detected == 1


def test_entry_flicker_resets(monitor):
    monitor.handle_message(book("up-tok", asks=["0.01"]), now=OPEN + 10)
    lines = monitor.handle_message(book("up-tok", asks=["0.05"]), now=OPEN + 11)
    assert any("entry flicker" in line for line in lines)
    assert monitor.tokens["up-tok"].entry_persist_start is None
    assert monitor.stats.entries_detected == 0


def test_bounce_confirmed(monitor):
    enter(monitor)
    monitor.handle_message(book("up-tok", bids=["0.03"], asks=["0.04"]), now=OPEN + 12)
    lines = monitor.handle_message(book("up-tok", bids=["0.03"], asks=["0.04"]), now=OPEN + 13)
    assert any("CONFIRMED BOUNCE" in line for line in lines)
    assert monitor.stats.bounces_hit == 1
    assert not monitor.tokens["up-tok"].in_entry


def test_bounce_flicker(monitor):
    enter(monitor)
    monitor.handle_message(book("up-tok", bids=["0.03"]), now=OPEN + 12)
    lines = monitor.handle_message(book("up-tok", bids=["0.005"]), now=OPEN + 13)
    assert any("BOUNCE-FLICKER" in line for line in lines)
    assert monitor.tokens["up-tok"].bounce_persist_start is None


def test_miss_at_window_end(monitor):
    enter(monitor)
    lines = monitor.handle_message(book("up-tok", bids=["0.005"]), now=OPEN + 295)
    assert any("MISS" in line for line in lines)
    assert monitor.stats.bounces_missed == 1


def test_no_entry_after_cutoff(monitor):
    lines = monitor.handle_message(book("up-tok", asks=["0.01"]), now=OPEN + 250)
    assert lines == []
    assert monitor.tokens["up-tok"].entry_persist_start is None


def test_price_change_evaluated_but_other_events_skipped(monitor):
    monitor.handle_message(book("up-tok", asks=["0.04"]), now=OPEN + 5)
    before = monitor.stats.near_entry_observations
    other = json.dumps({"event_type": "tick_size_change", "asset_id": "up-tok"})
    monitor.handle_message(other, now=OPEN + 6)
    assert monitor.stats.near_entry_observations == before
    change = json.dumps({"event_type": "price_change", "asset_id": "up-tok"})
    monitor.handle_message(change, now=OPEN + 7)
    assert monitor.stats.near_entry_observations == before + 1


def test_stats_report_includes_hit_rate_after_entry(monitor):
    assert "hit rate" not in monitor.stats_report()
    enter(monitor)
    report = monitor.stats_report()
    assert "hit rate" in report
    assert "Entries CONFIRMED (ask≤$0.01 sustained):  1" in report


def test_min_and_max_ask_tracked(monitor):
    monitor.handle_message(book("up-tok", asks=["0.6"]), now=OPEN + 5)
    monitor.handle_message(book("down-tok", asks=["0.4"]), now=OPEN + 6)
    assert monitor.stats.max_ask_seen == 0.6
    assert monitor.stats.min_ask_during_trading == 0.4