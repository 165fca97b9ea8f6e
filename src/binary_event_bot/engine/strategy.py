from dataclasses import dataclass, field
from typing import Dict, List

from binary_event_bot.config import StrategyConfig
from binary_event_bot.models import MarketTick, OrderRequest
from binary_event_bot.risk.guards import RiskManager


@dataclass
class StrategyContext:
    risk_manager: RiskManager
    existing_entry_count_by_event: Dict[str, int] = field(default_factory=dict)
    has_open_position_by_event: Dict[str, bool] = field(default_factory=dict)


def _in_band(px: float, lo: float, hi: float) -> bool:
    return lo <= px <= hi


def evaluate_near_threshold(ticks: List[MarketTick], ctx: StrategyContext, cfg: StrategyConfig) -> List[OrderRequest]:
    """Propose LIMIT_BUY entries for sides priced inside the entry band.

    Stateless: the same input always yields the same orders, so repeated
    proposals are gated by the risk manager and open-tranche counts.
    """
    out: List[OrderRequest] = []

    for t in ticks:
        event_id = t.event.id
        hours_to_expiry = t.event.seconds_to_resolution / 3600.0

        if hours_to_expiry < cfg.min_hours_to_expiry_for_entry:
            continue
        if t.volatility_30m > cfg.max_volatility_30m_for_entry:
            continue
        # no re-entry after a losing exit
        if ctx.risk_manager.has_recent_loss_on_event(event_id):
            continue
        if ctx.existing_entry_count_by_event.get(event_id, 0) >= cfg.max_entry_tranches_per_event:
            continue

        # second tranche when a position is already open
        size = cfg.add_entry_size if ctx.has_open_position_by_event.get(event_id, False) else cfg.first_entry_size

        if _in_band(t.yes_price, cfg.entry_price_min, cfg.entry_price_max):
            out.append(OrderRequest(event_id=event_id, side="YES", price=t.yes_price, size=size, kind="LIMIT_BUY"))
        if _in_band(t.no_price, cfg.entry_price_min, cfg.entry_price_max):
            out.append(OrderRequest(event_id=event_id, side="NO", price=t.no_price, size=size, kind="LIMIT_BUY"))

    return out
