import json
import threading
import time
from pathlib import Path

import pytest

from conftest import T0


def _closed(engine):
    return [p for p in engine.state.positions if p.closed]


def _warns(engine):
    return [e for e in engine.state.logs if e.level == "WARN"]


def test_stop_loss_closes_yes_position_on_drop(cfg, feed, clock, make_engine):
    cfg.strategy.entry_price_max = 0.90
    engine = make_engine(cfg)

    feed.set_price("ev-sl", 0.90, clock())
    engine.run_once()
    [pos] = engine.state.positions
    assert pos.side == "YES" and pos.avg_entry_price == pytest.approx(0.90)

    clock.advance(10 * 60)
    feed.set_price("ev-sl", 0.84, clock())
    engine.run_once()

    assert pos.closed is True
    assert pos.exit_reason == "STOP_LOSS"
    assert pos.exit_price == pytest.approx(0.84)
    assert pos.closed_timestamp == clock()
    assert pos.realized_pnl_usd == pytest.approx((0.84 - 0.90) * pos.size * cfg.base_capital_usd)
    assert pos.realized_pnl_usd < 0
    assert engine.state.event_phases["ev-sl"].phase == "EXITED"
    assert engine.risk_manager.has_recent_loss_on_event("ev-sl")


def test_no_stop_loss_without_lookback_point(cfg, feed, clock, make_engine):
    engine = make_engine(cfg)
    feed.set_price("ev-a", 0.87, clock())
    engine.run_once()

    clock.advance(60)
    feed.set_price("ev-a", 0.80, clock())
    engine.run_once()

    [pos] = engine.state.positions
    assert pos.closed is False
    assert pos.unrealized_pnl_usd == pytest.approx((0.80 - 0.87) * pos.size * cfg.base_capital_usd)
    assert engine.state.event_phases["ev-a"].phase == "IN_POSITION"


def test_no_stop_loss_across_history_gap(cfg, feed, clock, make_engine):
    engine = make_engine(cfg)
    feed.set_price("ev-gap", 0.87, clock())
    engine.run_once()

    # the only point before the cutoff is far older than one window
    clock.advance(45 * 60)
    feed.set_price("ev-gap", 0.80, clock())
    engine.run_once()

    assert not _closed(engine)


def test_take_profit_closes_with_positive_pnl(cfg, feed, clock, make_engine):
    engine = make_engine(cfg)
    feed.set_price("ev-tp", 0.87, clock())
    engine.run_once()
    [pos] = engine.state.positions

    clock.advance(60)
    feed.set_price("ev-tp", 0.94, clock())
    engine.run_once()

    assert pos.exit_reason == "TAKE_PROFIT"
    assert pos.realized_pnl_usd == pytest.approx((0.94 - 0.87) * pos.size * cfg.base_capital_usd)
    assert engine.state.realized_pnl_usd == pytest.approx(pos.realized_pnl_usd)
    assert engine.risk_manager.get_state().daily_realized_pnl_usd == pytest.approx(pos.realized_pnl_usd)
    last = engine.state.logs[-1]
    assert last.decision_trigger == "TAKE_PROFIT" and last.level == "INFO"
    assert last.market_snapshot.yes_price == pytest.approx(0.94)


def test_force_exit_near_resolution_regardless_of_price(cfg, feed, clock, make_engine):
    engine = make_engine(cfg)
    feed.set_price("ev-fx", 0.87, clock())
    engine.run_once()
    [pos] = engine.state.positions

    clock.advance(60)
    feed.set_price("ev-fx", 0.88, clock(), seconds_to_resolution=1200)
    engine.run_once()

    assert pos.exit_reason == "FORCE_EXIT"
    assert pos.realized_pnl_usd == pytest.approx((0.88 - 0.87) * pos.size * cfg.base_capital_usd)


def test_no_side_pnl_uses_entry_minus_exit(cfg, feed, clock, make_engine):
    engine = make_engine(cfg)
    # yes 0.13 -> no 0.87 sits in the entry band
    feed.set_price("ev-no", 0.13, clock())
    engine.run_once()
    [pos] = engine.state.positions
    assert pos.side == "NO"

    clock.advance(60)
    feed.set_price("ev-no", 0.06, clock())
    engine.run_once()

    assert pos.exit_reason == "TAKE_PROFIT"
    assert pos.exit_price == pytest.approx(0.94)
    assert pos.realized_pnl_usd == pytest.approx((pos.avg_entry_price - 0.94) * pos.size * cfg.base_capital_usd)


def test_third_event_rejected_by_concurrent_limit(cfg, feed, clock, make_engine):
    cfg.risk.max_concurrent_events = 2
    engine = make_engine(cfg)
    for ev in ("ev-1", "ev-2", "ev-3"):
        feed.set_price(ev, 0.87, clock())

    engine.run_once()

    assert {p.event_id for p in engine.state.positions} == {"ev-1", "ev-2"}
    assert len(engine.state.executed_orders) == 2
    [warn] = _warns(engine)
    assert warn.event_id == "ev-3"
    assert warn.decision_trigger == "RISK_REJECT"
    assert "max_concurrent_events" in warn.message
    assert "ev-3" not in {k for k, v in engine.state.event_phases.items() if v.phase == "IN_POSITION"}


def test_second_tranche_uses_smaller_size_and_stops_at_max(cfg, feed, clock, make_engine):
    engine = make_engine(cfg)
    feed.set_price("ev-t", 0.87, clock())
    engine.run_once()
    clock.advance(10)
    feed.set_price("ev-t", 0.87, clock())
    engine.run_once()
    clock.advance(10)
    feed.set_price("ev-t", 0.87, clock())
    engine.run_once()

    sizes = [p.size for p in engine.state.positions]
    assert sizes == [cfg.strategy.first_entry_size, cfg.strategy.add_entry_size]


def test_missing_tick_leaves_position_untouched(cfg, feed, clock, make_engine):
    engine = make_engine(cfg)
    feed.set_price("ev-a", 0.87, clock())
    engine.run_once()

    feed.drop("ev-a")
    clock.advance(30 * 60)
    engine.run_once()

    [pos] = engine.state.positions
    assert pos.closed is False
    assert engine.state.prices == []


def test_disabled_bot_cycle_is_noop(cfg, feed, clock, make_engine):
    engine = make_engine(cfg)
    engine.state.bot_enabled = False
    feed.set_price("ev-a", 0.87, clock())

    engine.run_once()

    assert engine.state.prices == []
    assert engine.state.positions == []


def test_prices_snapshot_replaced_each_cycle(cfg, feed, clock, make_engine):
    engine = make_engine(cfg)
    feed.set_price("ev-a", 0.70, clock())
    feed.set_price("ev-b", 0.71, clock())
    engine.run_once()
    assert [p.event_id for p in engine.state.prices] == ["ev-a", "ev-b"]

    feed.drop("ev-a")
    engine.run_once()
    assert [p.event_id for p in engine.state.prices] == ["ev-b"]
    assert engine.state.event_phases["ev-b"].phase == "IDLE"


def test_closed_positions_are_fully_stamped(cfg, feed, clock, make_engine):
    engine = make_engine(cfg)
    for ev in ("ev-1", "ev-2"):
        feed.set_price(ev, 0.87, clock())
    engine.run_once()
    clock.advance(60)
    feed.set_price("ev-1", 0.93, clock())
    feed.set_price("ev-2", 0.88, clock(), seconds_to_resolution=600)
    engine.run_once()

    for p in _closed(engine):
        assert p.exit_price is not None and p.exit_reason is not None and p.closed_timestamp is not None
        per_unit = p.exit_price - p.avg_entry_price if p.side == "YES" else p.avg_entry_price - p.exit_price
        assert p.realized_pnl_usd == pytest.approx(per_unit * p.size * cfg.base_capital_usd)
    assert len(_closed(engine)) == 2


def test_reset_is_idempotent_and_replaces_risk_state(cfg, feed, clock, make_engine):
    cfg.strategy.entry_price_max = 0.90
    engine = make_engine(cfg)
    feed.set_price("ev-sl", 0.90, clock())
    engine.run_once()
    clock.advance(600)
    feed.set_price("ev-sl", 0.80, clock())
    engine.run_once()
    old_risk = engine.risk_manager
    assert old_risk.has_recent_loss_on_event("ev-sl")

    engine.reset_scenario()
    once = engine.state.snapshot()
    once_risk = engine.risk_manager.get_state().model_dump()
    engine.reset_scenario()

    assert engine.state.snapshot() == once
    assert engine.risk_manager.get_state().model_dump() == once_risk
    assert engine.risk_manager is not old_risk
    assert not engine.risk_manager.has_recent_loss_on_event("ev-sl")
    assert once["positions"] == [] and once["logs"] == [] and once["prices"] == []
    assert once["realized_pnl_usd"] == 0.0
    assert feed.resets == 2


def test_reset_with_restart_only_starts_enabled_bot(cfg, feed, make_engine):
    cfg.app.poll_interval_seconds = 3600
    engine = make_engine(cfg)
    engine.start()

    engine.reset_scenario(restart=True)
    assert engine.is_running()
    assert (feed.stops, feed.starts) == (1, 2)

    engine.set_enabled(False)
    engine.reset_scenario(restart=True)
    assert not engine.is_running()


def test_replay_end_is_logged(cfg, make_engine, tmp_path):
    path = tmp_path / "r.jsonl"
    path.write_text("\n".join(json.dumps({"ts": f"2026-03-02T12:0{i}:00Z", "price": 0.7}) for i in range(3)) + "\n")
    engine = make_engine(cfg)
    engine.set_market_data_mode("REPLAY")
    assert engine.load_replay_file(str(path))["total"] == 3
    engine.set_replay_speed(1000)

    engine.start_replay()
    deadline = time.time() + 3.0
    finished = []
    while time.time() < deadline and not finished:
        finished = [e for e in engine.snapshot()["logs"] if e["message"] == "Replay finished"]
        time.sleep(0.02)

    [entry] = finished
    assert entry["level"] == "INFO"
    assert entry["payload"]["progress"]["index"] == 3


def test_unreadable_replay_file_raises_value_error(cfg, make_engine, tmp_path):
    engine = make_engine(cfg)
    with pytest.raises(ValueError):
        engine.load_replay_file(str(tmp_path))
    assert engine.feeds.get_replay_feed().get_progress()["total"] == 0


def test_start_and_stop_are_idempotent(cfg, feed, make_engine):
    cfg.app.poll_interval_seconds = 3600
    engine = make_engine(cfg)

    engine.start()
    first = engine._thread
    engine.start()
    assert engine._thread is first
    assert engine.is_running()
    assert feed.starts == 1

    engine.stop()
    engine.stop()
    assert not engine.is_running()
    assert feed.stops == 1


def test_background_loop_runs_cycles(cfg, feed, clock, make_engine):
    cfg.app.poll_interval_seconds = 0.01
    engine = make_engine(cfg)
    feed.set_price("ev-a", 0.70, clock())

    engine.start()
    deadline = time.time() + 2.0
    while time.time() < deadline and not engine.snapshot()["prices"]:
        time.sleep(0.01)
    engine.stop()

    assert engine.snapshot()["prices"][0]["event_id"] == "ev-a"


def test_toggle_flips_flag_and_engine(cfg, feed, make_engine):
    cfg.app.poll_interval_seconds = 3600
    engine = make_engine(cfg)
    engine.start()

    assert engine.toggle() is False
    assert not engine.is_running()
    assert engine.toggle() is True
    assert engine.is_running()


def test_structured_log_lines_are_persisted(cfg, feed, clock, make_engine, events_path):
    engine = make_engine(cfg)
    feed.set_price("ev-a", 0.87, clock())
    engine.run_once()

    lines = [json.loads(ln) for ln in Path(events_path).read_text().splitlines()]
    [rec] = lines
    assert rec["decision_trigger"] == "ORDER_FILLED"
    assert rec["level"] == "INFO"
    assert rec["event_id"] == "ev-a"
    assert rec["price"] == pytest.approx(0.87)
    assert rec["time_to_resolution_min"] == pytest.approx(360.0)
    assert rec["tick_ts"].startswith("2026-03-02T12:00:00")
    assert "ts" in rec


def test_log_write_failure_does_not_abort_cycle(cfg, feed, clock, make_engine, tmp_path):
    # a directory cannot be opened for append
    engine = make_engine(cfg, events_path=str(tmp_path))
    feed.set_price("ev-a", 0.87, clock())

    engine.run_once()

    assert len(engine.state.positions) == 1
    assert engine.state.logs[-1].decision_trigger == "ORDER_FILLED"


def test_snapshot_shape(cfg, feed, clock, make_engine):
    engine = make_engine(cfg)
    feed.set_price("ev-a", 0.87, clock())
    engine.run_once()

    snap = engine.snapshot()
    assert set(snap) >= {
        "botEnabled", "engineRunning", "positions", "todayPnlUsd", "prices",
        "logs", "eventPhases", "eventSummary", "marketDataMode", "riskState",
    }
    assert snap["eventPhases"]["ev-a"]["phase"] == "IN_POSITION"
    assert snap["eventSummary"] == [
        {"event_id": "ev-a", "trades": 1, "open": 1, "wins": 0, "losses": 0, "realized_pnl_usd": 0.0, "last_exit_reason": None}
    ]
    assert snap["replayProgress"] is None
    json.dumps(snap)


def test_stop_waits_for_in_flight_cycle(cfg, feed, clock, make_engine):
    cfg.app.poll_interval_seconds = 0.01
    cfg.strategy.max_entry_tranches_per_event = 1
    engine = make_engine(cfg)
    feed.set_price("ev-a", 0.87, clock())

    entered = threading.Event()
    release = threading.Event()
    real_execute = engine.executor.execute

    def slow_execute(order):
        entered.set()
        release.wait(2.0)
        return real_execute(order)

    engine.executor.execute = slow_execute
    engine.start()
    assert entered.wait(2.0)

    stopper = threading.Thread(target=engine.stop)
    stopper.start()
    time.sleep(0.05)
    assert stopper.is_alive()
    release.set()
    stopper.join(2.0)

    assert not engine.is_running()
    assert len(engine.state.positions) == 1
    assert engine.state.positions[0].open_timestamp == T0
