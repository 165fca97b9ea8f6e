import logging
import threading
import time
from datetime import date
from typing import Callable, Dict, List, Optional

from binary_event_bot.config import BotConfig
from binary_event_bot.engine.strategy import StrategyContext, evaluate_near_threshold
from binary_event_bot.execution.paper import PaperExecutor
from binary_event_bot.feeds.base import MarketDataFeed
from binary_event_bot.feeds.factory import FeedFactory, validate_mode
from binary_event_bot.models import MarketSnapshot, MarketTick, OrderRequest, Position, PricePoint, PriceSnapshot
from binary_event_bot.report import build_event_summary, today_pnl_usd
from binary_event_bot.risk.guards import RiskManager, utc_today
from binary_event_bot.sim.paper import close_position, mark_position, open_position
from binary_event_bot.state import RuntimeState
from binary_event_bot.utils.storage import append_event, log_record

log = logging.getLogger(__name__)


class BotEngine:
    """Runs the poll cycle: exits first, then strategy entries through risk.

    One re-entrant lock serialises cycles with every control operation, so
    start / stop / reset / toggle never interleave with a cycle in flight.
    """

    def __init__(
        self,
        cfg: BotConfig,
        state: Optional[RuntimeState] = None,
        feeds: Optional[FeedFactory] = None,
        executor: Optional[PaperExecutor] = None,
        clock: Callable[[], float] = time.time,
        today: Callable[[], date] = utc_today,
        events_path: Optional[str] = None,
    ):
        self.cfg = cfg
        self.state = state or RuntimeState(bot_enabled=cfg.app.bot_enabled)
        self.feeds = feeds or FeedFactory(cfg)
        self.executor = executor or PaperExecutor(cfg.execution, clock=clock)
        self._clock = clock
        self._today = today
        self.events_path = events_path if events_path is not None else cfg.storage.events_path
        self.risk_manager = RiskManager(cfg, today=today)
        self.feeds.on_replay_end = self._on_replay_end

        self._lock = threading.RLock()
        self._thread: Optional[threading.Thread] = None
        self._stop_evt: Optional[threading.Event] = None

    # lifecycle

    def is_running(self) -> bool:
        return self._thread is not None

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            self.feeds.get_feed().start()
            self._stop_evt = threading.Event()
            self._thread = threading.Thread(target=self._loop, args=(self._stop_evt,), name="bot-engine", daemon=True)
            self._thread.start()
            log.info("engine started (interval=%ss, mode=%s)", self.cfg.app.poll_interval_seconds, self.feeds.mode)

    def stop(self) -> None:
        with self._lock:
            if self._thread is None:
                return
            self._stop_evt.set()
            self._stop_evt = None
            self._thread = None
            self.feeds.get_feed().stop()
            log.info("engine stopped")

    def _loop(self, stop_evt: threading.Event) -> None:
        while not stop_evt.wait(self.cfg.app.poll_interval_seconds):
            with self._lock:
                if stop_evt.is_set():
                    return
                try:
                    self.run_once()
                except Exception as e:
                    log.exception("cycle failed")
                    self._emit("ERROR", f"cycle failed: {e}", payload={"error": str(e)})

    def reset_scenario(self, restart: bool = False) -> None:
        """Stop, clear state and rewind the feed. With ``restart`` an enabled
        bot is started again before the lock is released."""
        with self._lock:
            self.stop()
            self.state.reset()
            self.feeds.get_feed().reset()
            self.risk_manager = RiskManager(self.cfg, today=self._today)
            log.info("scenario reset")
            if restart and self.state.bot_enabled:
                self.start()

    def set_enabled(self, enabled: bool) -> bool:
        with self._lock:
            self.state.bot_enabled = bool(enabled)
            if self.state.bot_enabled and not self.is_running():
                self.start()
            elif not self.state.bot_enabled and self.is_running():
                self.stop()
            return self.state.bot_enabled

    def toggle(self) -> bool:
        with self._lock:
            return self.set_enabled(not self.state.bot_enabled)

    def set_market_data_mode(self, mode: str) -> str:
        m = validate_mode(mode)
        with self._lock:
            self.stop()
            return self.feeds.set_mode(m)

    # replay controls

    def load_replay_file(self, file_path: str) -> dict:
        with self._lock:
            replay = self.feeds.get_replay_feed()
            try:
                replay.load_file(file_path)
            except OSError as e:
                raise ValueError(f"cannot read replay file {file_path!r}: {e.strerror or e}") from e
            return replay.get_progress()

    def start_replay(self) -> None:
        with self._lock:
            self.feeds.get_replay_feed().start()

    def pause_replay(self) -> None:
        with self._lock:
            self.feeds.get_replay_feed().pause()

    def resume_replay(self) -> None:
        with self._lock:
            self.feeds.get_replay_feed().resume()

    def stop_replay(self) -> None:
        with self._lock:
            self.feeds.get_replay_feed().stop()

    def set_replay_speed(self, speed: float) -> None:
        with self._lock:
            self.feeds.get_replay_feed().set_replay_speed(speed)

    def _on_replay_end(self) -> None:
        with self._lock:
            self._emit("INFO", "Replay finished", payload={"progress": self.feeds.get_replay_feed().get_progress()})

    # cycle

    def run_once(self) -> None:
        with self._lock:
            if not self.state.bot_enabled:
                return
            feed = self.feeds.get_feed()
            ticks = feed.get_ticks()
            now = self._clock()

            self.state.update_prices(
                [
                    PriceSnapshot(
                        event_id=t.event.id,
                        title=t.event.title,
                        yes_price=t.yes_price,
                        no_price=t.no_price,
                        seconds_to_resolution=t.event.seconds_to_resolution,
                        timestamp=t.timestamp,
                    )
                    for t in ticks
                ]
            )
            for t in ticks:
                if t.event.id not in self.state.event_phases:
                    self.state.update_event_phase(t.event.id, "IDLE", now)

            self._handle_exits(feed, ticks)

            entry_counts: Dict[str, int] = {}
            has_open: Dict[str, bool] = {}
            for p in self.state.open_positions():
                entry_counts[p.event_id] = entry_counts.get(p.event_id, 0) + 1
                has_open[p.event_id] = True

            ctx = StrategyContext(
                risk_manager=self.risk_manager,
                existing_entry_count_by_event=entry_counts,
                has_open_position_by_event=has_open,
            )
            for order in evaluate_near_threshold(ticks, ctx, self.cfg.strategy):
                self._try_entry(order, ticks)

    def _stop_loss_hit(self, pos: Position, history: List[PricePoint], current: float, now: float) -> bool:
        st = self.cfg.strategy
        window = st.stop_loss_window_minutes * 60.0
        cutoff = now - window
        past = next((p for p in reversed(history) if p.timestamp <= cutoff), None)
        # nothing that far back yet, or the history has a gap around the cutoff
        if past is None or past.timestamp < cutoff - window:
            return False
        past_px = past.price if pos.side == "YES" else 1.0 - past.price
        if past_px <= 0:
            return False
        return (current - past_px) / past_px <= st.stop_loss_drop_pct_in_minutes

    def _handle_exits(self, feed: MarketDataFeed, ticks: List[MarketTick]) -> None:
        st = self.cfg.strategy
        by_event = {t.event.id: t for t in ticks}
        for pos in self.state.open_positions():
            tick = by_event.get(pos.event_id)
            if tick is None:
                continue

            price = tick.yes_price if pos.side == "YES" else tick.no_price
            minutes_to_expiry = tick.event.seconds_to_resolution / 60.0

            if self._stop_loss_hit(pos, feed.get_price_history(pos.event_id), price, tick.timestamp):
                self._close(pos, price, "STOP_LOSS", tick)
            elif st.take_profit_min <= price <= st.take_profit_max:
                self._close(pos, price, "TAKE_PROFIT", tick)
            elif minutes_to_expiry <= st.force_exit_minutes_before_expiry:
                self._close(pos, price, "FORCE_EXIT", tick)
            else:
                mark_position(pos, price, self.cfg.base_capital_usd)
                self.state.update_event_phase(pos.event_id, "IN_POSITION", self._clock())

    def _close(self, pos: Position, exit_price: float, reason: str, tick: MarketTick) -> None:
        now = self._clock()
        pnl = close_position(self.state, pos, exit_price, reason, self.cfg.base_capital_usd, now)
        self.risk_manager.on_position_closed(pos, pnl)
        self.state.update_event_phase(pos.event_id, "EXITED", now)
        self._emit(
            "INFO" if pnl >= 0 else "WARN",
            f"Exit ({reason}) side={pos.side} price={exit_price:.3f} pnlUsd={pnl:.2f}",
            event_id=pos.event_id,
            trigger=reason,
            tick=tick,
            payload={
                "entry_price": pos.avg_entry_price,
                "exit_price": exit_price,
                "size": pos.size,
                "realized_pnl_usd": pnl,
                "holding_seconds": now - pos.open_timestamp,
            },
        )

    def _try_entry(self, order: OrderRequest, ticks: List[MarketTick]) -> Optional[Position]:
        notional = order.price * order.size * self.cfg.base_capital_usd
        check = self.risk_manager.can_place_order(order, notional)
        if not check.allowed:
            self._emit(
                "WARN",
                f"Entry rejected (risk limit): {check.reason}",
                event_id=order.event_id,
                trigger="RISK_REJECT",
                payload={"reason": check.reason, "side": order.side, "price": order.price, "size": order.size},
            )
            return None

        fill = self.executor.execute(order)
        pos = open_position(self.state, fill)
        self.risk_manager.on_position_opened(pos)
        self.state.update_event_phase(order.event_id, "IN_POSITION", self._clock())

        tick = next((t for t in ticks if t.event.id == order.event_id), None)
        self._emit(
            "INFO",
            f"Entry ({order.kind}) side={order.side} price={order.price:.3f} size={order.size} filled={fill.filled_price:.3f}",
            event_id=order.event_id,
            trigger="ORDER_FILLED",
            tick=tick,
            payload={"order_price": order.price, "filled_price": fill.filled_price, "size": order.size},
        )
        return pos

    def _emit(self, level: str, message: str, event_id: Optional[str] = None, trigger: Optional[str] = None,
              tick: Optional[MarketTick] = None, payload: Optional[dict] = None) -> None:
        entry = self.state.append_log(
            level,
            message,
            ts=self._clock(),
            event_id=event_id,
            trigger=trigger,
            snapshot=MarketSnapshot.from_tick(tick) if tick else None,
            payload=payload,
        )
        if self.events_path:
            append_event(self.events_path, log_record(entry))

    # read side

    def snapshot(self) -> dict:
        with self._lock:
            feed = self.feeds.get_feed()
            data = self.state.snapshot()
            return {
                "botEnabled": self.state.bot_enabled,
                "engineRunning": self.is_running(),
                "marketDataMode": self.feeds.mode,
                "positions": data["positions"],
                "todayPnlUsd": today_pnl_usd(self.state.positions, self._today()),
                "realizedPnlUsd": self.state.realized_pnl_usd,
                "prices": data["prices"],
                "logs": data["logs"],
                "eventPhases": data["event_phases"],
                "eventSummary": build_event_summary(self.state.positions),
                "riskState": self.risk_manager.get_state().model_dump(mode="json"),
                "replayProgress": feed.get_progress(),
            }

    def report(self) -> dict:
        with self._lock:
            return {"eventSummary": build_event_summary(self.state.positions)}
