from __future__ import annotations
import json
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import List

from pydantic import ValidationError

from binary_event_bot.models import LogEntry, ReplayRow

log = logging.getLogger(__name__)


def iso_ts(ts: float) -> str:
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat()


def append_event(path: str, event: dict) -> bool:
    """Append one JSON line. Write failures are reported, never raised."""
    p = Path(path)
    event = {"ts": datetime.now(timezone.utc).isoformat(), **event}
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        with p.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event) + "\n")
    except OSError as e:
        log.error("structured log write failed (%s): %s", path, e)
        return False
    return True


def log_record(entry: LogEntry) -> dict:
    """Flatten a log entry into the persisted line layout."""
    snap = entry.market_snapshot
    out = entry.model_dump(mode="json")
    out.update(
        {
            "trigger": entry.decision_trigger,
            "market_title": snap.market_title if snap else entry.payload.get("market_title"),
            "price": snap.yes_price if snap else None,
            "volatility_30m": snap.volatility_30m if snap else None,
            "time_to_resolution_min": snap.seconds_to_resolution / 60.0 if snap else None,
            "tick_ts": iso_ts(snap.timestamp) if snap else None,
        }
    )
    return out


def read_replay_rows(path: str) -> List[ReplayRow]:
    p = Path(path)
    if not p.exists():
        return []
    rows: List[ReplayRow] = []
    for ln in p.read_text(encoding="utf-8").strip().splitlines():
        if not ln.strip():
            continue
        try:
            obj = json.loads(ln)
        except json.JSONDecodeError:
            continue
        if not isinstance(obj, dict) or not isinstance(obj.get("ts"), str):
            continue
        if isinstance(obj.get("price"), bool) or not isinstance(obj.get("price"), (int, float)):
            continue
        try:
            rows.append(ReplayRow.model_validate(obj))
        except ValidationError:
            continue
    return rows
