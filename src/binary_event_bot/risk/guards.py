from datetime import date, datetime, timezone
from typing import Callable, Optional

from binary_event_bot.config import BotConfig
from binary_event_bot.models import OrderRequest, Position, RiskCheckResult, RiskState


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def rollover(state: RiskState, today: date) -> RiskState:
    """Return ``state`` as seen on ``today``.

    A new calendar day zeroes the daily PnL and the loss streak. Tracked
    positions survive the rollover.
    """
    day = today.isoformat()
    if state.date == day:
        return state
    return state.model_copy(
        update={
            "date": day,
            "daily_realized_pnl_usd": 0.0,
            "consecutive_losses": 0,
            "active_positions": list(state.active_positions),
        }
    )


def position_notional_usd(pos: Position, base_capital_usd: float) -> float:
    return float(pos.avg_entry_price) * float(pos.size) * float(base_capital_usd)


class RiskManager:
    def __init__(self, cfg: BotConfig, initial_state: Optional[RiskState] = None, today: Callable[[], date] = utc_today):
        self.cfg = cfg
        self._today = today
        self.state = initial_state or RiskState(date=today().isoformat())

    def _ensure_date(self) -> RiskState:
        self.state = rollover(self.state, self._today())
        return self.state

    @property
    def max_daily_loss_usd(self) -> float:
        return self.cfg.base_capital_usd * self.cfg.risk.max_daily_loss_pct

    @property
    def max_capital_per_event_usd(self) -> float:
        return self.cfg.base_capital_usd * self.cfg.risk.max_capital_per_event_pct

    def get_state(self) -> RiskState:
        return self._ensure_date()

    def can_place_order(self, order: OrderRequest, notional_usd: float) -> RiskCheckResult:
        st = self._ensure_date()
        risk = self.cfg.risk

        if st.daily_realized_pnl_usd <= self.max_daily_loss_usd:
            return RiskCheckResult(allowed=False, reason="daily_loss_limit")
        if st.consecutive_losses >= risk.max_consecutive_losses:
            return RiskCheckResult(allowed=False, reason="consecutive_loss_limit")

        open_positions = [p for p in st.active_positions if not p.closed]
        active_events = {p.event_id for p in open_positions}
        if order.event_id not in active_events and len(active_events) >= risk.max_concurrent_events:
            return RiskCheckResult(allowed=False, reason="max_concurrent_events")

        exposure = sum(position_notional_usd(p, self.cfg.base_capital_usd) for p in open_positions if p.event_id == order.event_id)
        if exposure + notional_usd > self.max_capital_per_event_usd:
            return RiskCheckResult(allowed=False, reason="max_capital_per_event")

        return RiskCheckResult(allowed=True)

    def has_recent_loss_on_event(self, event_id: str) -> bool:
        st = self._ensure_date()
        return any(p.event_id == event_id and p.closed and p.realized_pnl_usd < 0 for p in st.active_positions)

    def on_position_opened(self, position: Position) -> None:
        st = self._ensure_date()
        st.active_positions.append(position.model_copy())

    def on_position_closed(self, position: Position, realized_pnl_usd: float) -> None:
        st = self._ensure_date()
        st.daily_realized_pnl_usd += realized_pnl_usd
        if realized_pnl_usd < 0:
            st.consecutive_losses += 1
        elif realized_pnl_usd > 0:
            st.consecutive_losses = 0

        closed = position.model_copy(update={"closed": True, "realized_pnl_usd": realized_pnl_usd})
        for i, p in enumerate(st.active_positions):
            if p.id == position.id:
                st.active_positions[i] = closed
                return
        st.active_positions.append(closed)
