from datetime import datetime, timezone
from typing import Dict, List

import pytest

from binary_event_bot.config import BotConfig
from binary_event_bot.engine.bot import BotEngine
from binary_event_bot.execution.paper import PaperExecutor
from binary_event_bot.feeds.base import MarketDataFeed
from binary_event_bot.feeds.factory import FeedFactory
from binary_event_bot.models import MarketEvent, MarketTick, PricePoint, make_tick

T0 = 1772452800.0  # 2026-03-02T12:00:00Z


class Clock:
    def __init__(self, t: float = T0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds

    def today(self):
        return datetime.fromtimestamp(self.t, tz=timezone.utc).date()


class ScriptedFeed(MarketDataFeed):
    """Feed whose ticks and history are set by the test."""

    mode = "MOCK"

    def __init__(self):
        self.ticks: Dict[str, MarketTick] = {}
        self.history: Dict[str, List[PricePoint]] = {}
        self.resets = 0
        self.starts = 0
        self.stops = 0

    def set_price(self, event_id: str, yes_price: float, ts: float, seconds_to_resolution: float = 6 * 3600,
                  volatility: float = 0.0) -> None:
        ev = MarketEvent(id=event_id, title=f"Event {event_id}", seconds_to_resolution=seconds_to_resolution)
        self.ticks[event_id] = make_tick(ev, yes_price=yes_price, timestamp=ts, volatility_30m=volatility)
        self.history.setdefault(event_id, []).append(PricePoint(timestamp=ts, price=yes_price))

    def drop(self, event_id: str) -> None:
        self.ticks.pop(event_id, None)

    def get_ticks(self) -> List[MarketTick]:
        return list(self.ticks.values())

    def get_price_history(self, event_id: str) -> List[PricePoint]:
        return list(self.history.get(event_id, []))

    def reset(self) -> None:
        self.resets += 1
        self.ticks = {}
        self.history = {}

    def start(self) -> None:
        self.starts += 1

    def stop(self) -> None:
        self.stops += 1


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cfg():
    return BotConfig()


@pytest.fixture
def feed():
    return ScriptedFeed()


@pytest.fixture
def events_path(tmp_path):
    return str(tmp_path / "logs" / "bot.jsonl")


@pytest.fixture
def make_engine(feed, clock, events_path):
    engines = []

    def _make(cfg: BotConfig, **kwargs) -> BotEngine:
        kwargs.setdefault("events_path", events_path)
        eng = BotEngine(
            cfg,
            feeds=FeedFactory(cfg, feeds={"MOCK": feed}),
            executor=PaperExecutor(cfg.execution, clock=clock),
            clock=clock,
            today=clock.today,
            **kwargs,
        )
        engines.append(eng)
        return eng

    yield _make
    for eng in engines:
        eng.stop()
