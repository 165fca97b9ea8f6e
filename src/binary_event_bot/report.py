from datetime import date, datetime, timezone
from typing import Dict, List

from binary_event_bot.models import Position


def build_event_summary(positions: List[Position]) -> List[Dict]:
    rows: Dict[str, Dict] = {}
    last_closed: Dict[str, float] = {}
    for p in positions:
        row = rows.setdefault(
            p.event_id,
            {
                "event_id": p.event_id,
                "trades": 0,
                "open": 0,
                "wins": 0,
                "losses": 0,
                "realized_pnl_usd": 0.0,
                "last_exit_reason": None,
            },
        )
        row["trades"] += 1
        if not p.closed:
            row["open"] += 1
            continue
        if p.realized_pnl_usd > 0:
            row["wins"] += 1
        elif p.realized_pnl_usd < 0:
            row["losses"] += 1
        row["realized_pnl_usd"] = round(row["realized_pnl_usd"] + p.realized_pnl_usd, 6)
        if (p.closed_timestamp or 0.0) >= last_closed.get(p.event_id, 0.0):
            last_closed[p.event_id] = p.closed_timestamp or 0.0
            row["last_exit_reason"] = p.exit_reason
    return [rows[k] for k in sorted(rows)]


def today_pnl_usd(positions: List[Position], today: date) -> float:
    total = 0.0
    for p in positions:
        if not p.closed or p.closed_timestamp is None:
            continue
        if datetime.fromtimestamp(p.closed_timestamp, tz=timezone.utc).date() == today:
            total += p.realized_pnl_usd
    return total
