from binary_event_bot.models import ExecutedOrder, Position
from binary_event_bot.state import RuntimeState


def side_pnl_usd(side: str, entry_price: float, mark_price: float, size: float, base_capital_usd: float) -> float:
    per_unit = (mark_price - entry_price) if side == "YES" else (entry_price - mark_price)
    return float(per_unit) * float(size) * float(base_capital_usd)


def open_position(state: RuntimeState, fill: ExecutedOrder) -> Position:
    if fill.size <= 0 or fill.filled_price <= 0:
        raise ValueError("invalid_open")
    pos = Position(
        id=fill.id,
        event_id=fill.event_id,
        side=fill.side,
        avg_entry_price=float(fill.filled_price),
        size=float(fill.size),
        open_timestamp=float(fill.timestamp),
    )
    state.executed_orders.append(fill)
    state.positions.append(pos)
    return pos


def mark_position(pos: Position, price: float, base_capital_usd: float) -> float:
    pos.unrealized_pnl_usd = side_pnl_usd(pos.side, pos.avg_entry_price, price, pos.size, base_capital_usd)
    return pos.unrealized_pnl_usd


def close_position(state: RuntimeState, pos: Position, exit_price: float, reason: str, base_capital_usd: float, ts: float) -> float:
    if exit_price <= 0:
        raise ValueError("invalid_close")
    pnl = side_pnl_usd(pos.side, pos.avg_entry_price, exit_price, pos.size, base_capital_usd)
    pos.close(exit_price, reason, pnl, ts)
    state.realized_pnl_usd += pnl
    return pnl
