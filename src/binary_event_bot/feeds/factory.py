from pathlib import Path
from typing import Callable, Dict, List, Optional

from binary_event_bot.config import BotConfig
from binary_event_bot.feeds.base import MarketDataFeed
from binary_event_bot.feeds.mock import MockMarketDataFeed
from binary_event_bot.feeds.replay import ReplayMarketDataFeed

MODES = ("MOCK", "REPLAY")


def validate_mode(mode: str) -> str:
    m = str(mode or "").upper()
    if m not in MODES:
        raise ValueError(f"invalid market data mode: {mode!r} (use MOCK or REPLAY)")
    return m


class FeedFactory:
    """Keeps the selected market-data mode and one cached feed per mode."""

    def __init__(self, cfg: BotConfig, feeds: Optional[Dict[str, MarketDataFeed]] = None):
        self.cfg = cfg
        self.mode = cfg.app.market_data_mode
        self._feeds: Dict[str, MarketDataFeed] = dict(feeds or {})
        self.on_replay_end: Optional[Callable[[], None]] = None

    def _build(self, mode: str) -> MarketDataFeed:
        if mode == "REPLAY":
            return ReplayMarketDataFeed(self.cfg.replay, on_end=self._replay_ended)
        return MockMarketDataFeed(self.cfg.mock)

    def _replay_ended(self) -> None:
        if self.on_replay_end is not None:
            self.on_replay_end()

    def get_feed(self, mode: Optional[str] = None) -> MarketDataFeed:
        m = mode or self.mode
        if m not in self._feeds:
            self._feeds[m] = self._build(m)
        return self._feeds[m]

    def get_replay_feed(self) -> MarketDataFeed:
        return self.get_feed("REPLAY")

    def set_mode(self, mode: str) -> str:
        self.mode = validate_mode(mode)
        return self.mode

    def list_replay_files(self) -> List[dict]:
        d = Path(self.cfg.replay.replays_dir)
        if not d.is_dir():
            return []
        return [{"name": p.name, "path": str(p)} for p in sorted(d.glob("*.jsonl"))]
