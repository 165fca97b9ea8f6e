#!/usr/bin/env python3
"""Quick bot status snapshot.

Reads the control surface status JSON and prints compact, actionable status:
- engine / bot flags and market-data mode
- per-event prices and phases
- open positions and the last few decision logs
"""

from __future__ import annotations

import sys

import httpx

URL = "http://127.0.0.1:4001/api/status"


def fmt_pnl(v: float | None) -> str:
    if v is None:
        return "n/a"
    return f"{v:+.2f}"


def main() -> None:
    url = sys.argv[1] if len(sys.argv) > 1 else URL
    payload = httpx.get(url, timeout=5.0).json()

    print("=== BOT STATUS SNAPSHOT ===")
    print(
        f"bot_enabled={payload.get('botEnabled')}"
        f" engine_running={payload.get('engineRunning')}"
        f" mode={payload.get('marketDataMode')}"
        f" today_pnl={fmt_pnl(payload.get('todayPnlUsd'))}"
        f" realized_pnl={fmt_pnl(payload.get('realizedPnlUsd'))}"
    )

    phases = payload.get("eventPhases") or {}
    for p in payload.get("prices", []):
        phase = (phases.get(p.get("event_id")) or {}).get("phase", "-")
        print(
            f"EVENT {p.get('event_id')}"
            f" yes={p.get('yes_price'):.3f} no={p.get('no_price'):.3f}"
            f" ttr_min={p.get('seconds_to_resolution', 0) / 60:.0f}"
            f" phase={phase}"
        )

    open_pos = [p for p in payload.get("positions", []) if not p.get("closed")]
    print(f"open_positions: {len(open_pos)}")
    for p in open_pos:
        print(
            f"POS {p.get('id')} {p.get('event_id')} {p.get('side')}"
            f" entry={p.get('avg_entry_price'):.3f} size={p.get('size')}"
            f" upnl={fmt_pnl(p.get('unrealized_pnl_usd'))}"
        )

    risk = payload.get("riskState") or {}
    print(f"risk: daily_pnl={fmt_pnl(risk.get('daily_realized_pnl_usd'))} loss_streak={risk.get('consecutive_losses')}")

    for entry in (payload.get("logs") or [])[-5:]:
        print(f"LOG {entry.get('level')} {entry.get('event_id') or '-'} {entry.get('message')}")


if __name__ == "__main__":
    main()
