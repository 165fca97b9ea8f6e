from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from binary_event_bot.config import ReplayConfig
from binary_event_bot.feeds.base import MarketDataFeed
from binary_event_bot.models import MarketEvent, MarketTick, PricePoint, ReplayRow, make_tick
from binary_event_bot.utils.storage import read_replay_rows

BASE_TICK_SECONDS = 1.0  # one row per second at 1x
MIN_INTERVAL_SECONDS = 0.05
MIN_SPEED = 0.1


def parse_ts(s: str) -> Optional[float]:
    try:
        dt = datetime.fromisoformat((s or "").replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


class ReplayMarketDataFeed(MarketDataFeed):
    """Plays back a recorded JSONL tick file.

    A background thread advances the row index at ``replay_speed`` rows per
    second while playback is running and not paused.
    """

    mode = "REPLAY"

    def __init__(self, cfg: Optional[ReplayConfig] = None, file_path: Optional[str] = None,
                 on_end: Optional[Callable[[], None]] = None):
        self.cfg = cfg or ReplayConfig()
        self.event_id = self.cfg.event_id
        self.market_title = self.cfg.market_title
        self.resolution_ts = self.cfg.resolution_ts
        self.replay_speed = max(MIN_SPEED, float(self.cfg.replay_speed))
        self.on_end = on_end

        self._rows: List[ReplayRow] = []
        self._ticks: List[MarketTick] = []
        self._index = 0
        self._paused = True
        self._lock = threading.RLock()
        self._thread: Optional[threading.Thread] = None
        self._stop_evt: Optional[threading.Event] = None

        path = file_path or self.cfg.file_path
        if path:
            self.load_file(path)

    def load_file(self, file_path: str) -> None:
        rows = read_replay_rows(str(Path(file_path)))
        with self._lock:
            self._rows = rows
            self._ticks = [self._row_to_tick(r, i) for i, r in enumerate(rows)]
            self._index = 0

    def _seconds_to_resolution(self, row: ReplayRow, ts: float) -> float:
        if row.time_to_resolution_min is not None:
            return float(row.time_to_resolution_min) * 60.0
        for res in (row.resolution_ts, self.resolution_ts):
            res_ts = parse_ts(res) if res else None
            if res_ts is not None:
                return max(0.0, res_ts - ts)
        return 0.0

    def _row_to_tick(self, row: ReplayRow, i: int) -> MarketTick:
        ts = parse_ts(row.ts) or 0.0
        event = MarketEvent(
            id=row.event_id or self.event_id,
            title=row.market_title or self.market_title,
            seconds_to_resolution=self._seconds_to_resolution(row, ts),
        )
        vol = row.volume if row.volume is not None else 1000.0
        prev = self._rows[i - 1].price if i > 0 else row.price
        return make_tick(
            event,
            yes_price=row.price,
            timestamp=ts,
            volatility_30m=abs(row.price - prev),
            volume_last_30m=vol,
            avg_volume_last_2h=vol,
        )

    def get_ticks(self) -> List[MarketTick]:
        with self._lock:
            if not self._ticks:
                return []
            return [self._ticks[min(self._index, len(self._ticks) - 1)]]

    def get_price_history(self, event_id: str) -> List[PricePoint]:
        with self._lock:
            played = self._ticks[: self._index + 1]
            return [PricePoint(timestamp=t.timestamp, price=t.yes_price) for t in played if t.event.id == event_id]

    def reset(self) -> None:
        self.stop()
        with self._lock:
            self._index = 0
            self._paused = True

    def advance(self) -> bool:
        """Move one row forward. Returns False once playback hits the end."""
        with self._lock:
            self._index += 1
            return self._index < len(self._ticks)

    def _interval(self) -> float:
        return max(MIN_INTERVAL_SECONDS, BASE_TICK_SECONDS / self.replay_speed)

    def _run(self, stop_evt: threading.Event) -> None:
        while not stop_evt.wait(self._interval()):
            with self._lock:
                if self._paused:
                    continue
            if not self.advance():
                self.stop()
                if self.on_end:
                    self.on_end()
                return

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            self._paused = False
            self._stop_evt = threading.Event()
            self._thread = threading.Thread(target=self._run, args=(self._stop_evt,), daemon=True)
            self._thread.start()

    def stop(self) -> None:
        with self._lock:
            if self._stop_evt is not None:
                self._stop_evt.set()
            self._stop_evt = None
            self._thread = None
            self._paused = True

    def is_playing(self) -> bool:
        with self._lock:
            return self._thread is not None and not self._paused

    def pause(self) -> None:
        with self._lock:
            self._paused = True

    def resume(self) -> None:
        with self._lock:
            self._paused = False

    def set_replay_speed(self, speed: float) -> None:
        with self._lock:
            self.replay_speed = max(MIN_SPEED, float(speed))
            running = self._thread is not None
        if running:
            self.stop()
            self.start()

    def get_progress(self) -> dict:
        with self._lock:
            total = len(self._ticks)
            index = min(self._index, total)
            return {
                "index": index,
                "total": total,
                "percent": (index / total) * 100.0 if total else 0.0,
                "current_ts": self._rows[index].ts if index < total else None,
            }
