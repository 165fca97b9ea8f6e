import random
import time
from typing import Callable, Dict, List, Optional

from binary_event_bot.config import MockConfig
from binary_event_bot.feeds.base import MarketDataFeed
from binary_event_bot.models import MarketEvent, MarketTick, PricePoint, make_tick

HISTORY_WINDOW_SECONDS = 30 * 60
PRICE_FLOOR = 0.5
PRICE_CAP = 0.99

# event-1 drifts up toward the take-profit band, event-2 idles then sells off
BASE_EVENTS = [
    MarketEvent(id="event-1", title="Sample Event 1 (rally)", seconds_to_resolution=4 * 60 * 60),
    MarketEvent(id="event-2", title="Sample Event 2 (sell-off)", seconds_to_resolution=6 * 60 * 60),
]
START_PRICES = {"event-1": 0.88, "event-2": 0.90}


def volatility_30m(points: List[PricePoint]) -> float:
    if len(points) < 2:
        return 0.0
    total = sum(abs(points[i].price - points[i - 1].price) for i in range(1, len(points)))
    return total / (len(points) - 1)


class MockMarketDataFeed(MarketDataFeed):
    mode = "MOCK"

    def __init__(self, cfg: Optional[MockConfig] = None, clock: Callable[[], float] = time.time):
        self.cfg = cfg or MockConfig()
        self._clock = clock
        self._rng = random.Random(self.cfg.seed)
        self._base_seconds = {e.id: e.seconds_to_resolution for e in BASE_EVENTS}
        self.reset()

    def reset(self) -> None:
        self._rng = random.Random(self.cfg.seed)
        self._events: List[MarketEvent] = [e.model_copy() for e in BASE_EVENTS]
        self._last_prices: Dict[str, float] = dict(START_PRICES)
        self._history: Dict[str, List[PricePoint]] = {e.id: [] for e in BASE_EVENTS}

    def _next_price(self, ev: MarketEvent, prev: float) -> float:
        if ev.id == "event-1":
            return prev + 0.0005 + (self._rng.random() - 0.5) * 0.005

        elapsed_min = (self._base_seconds[ev.id] - ev.seconds_to_resolution) / 60.0
        noise = (self._rng.random() - 0.5) * 0.004
        if elapsed_min < 30:
            return prev + noise
        if elapsed_min < 60:
            return prev - 0.0008 + noise
        return prev - 0.003 + noise

    def _push_history(self, event_id: str, point: PricePoint) -> None:
        hist = self._history.setdefault(event_id, [])
        hist.append(point)
        cutoff = point.timestamp - HISTORY_WINDOW_SECONDS
        while hist and hist[0].timestamp < cutoff:
            hist.pop(0)

    def get_ticks(self) -> List[MarketTick]:
        now = self._clock()
        out: List[MarketTick] = []
        for ev in self._events:
            ev.seconds_to_resolution = max(0.0, ev.seconds_to_resolution - self.cfg.seconds_per_tick)
            prev = self._last_prices.get(ev.id, START_PRICES.get(ev.id, 0.88))
            px = max(PRICE_FLOOR, min(PRICE_CAP, self._next_price(ev, prev)))
            self._last_prices[ev.id] = px
            self._push_history(ev.id, PricePoint(timestamp=now, price=px))

            avg_volume_2h = 1000.0
            out.append(
                make_tick(
                    ev,
                    yes_price=px,
                    timestamp=now,
                    volatility_30m=volatility_30m(self._history[ev.id]),
                    volume_last_30m=avg_volume_2h * (0.5 + self._rng.random()),
                    avg_volume_last_2h=avg_volume_2h,
                )
            )
        return out

    def get_price_history(self, event_id: str) -> List[PricePoint]:
        return list(self._history.get(event_id, []))
