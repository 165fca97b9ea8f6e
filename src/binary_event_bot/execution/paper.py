from __future__ import annotations

import random
import threading
import time
from typing import Callable, Optional

from binary_event_bot.config import ExecutionConfig
from binary_event_bot.models import ExecutedOrder, OrderRequest

MIN_FILL_PRICE = 0.001
MAX_FILL_PRICE = 0.999


class PaperExecutor:
    """Simulated fills for entry orders.

    Fills at the order price plus uniform slippage in
    ``[-max_slippage, +max_slippage]`` after an optional fixed delay. Both are
    simulation knobs; with the defaults a fill is immediate and exact.
    """

    def __init__(self, cfg: Optional[ExecutionConfig] = None, clock: Callable[[], float] = time.time,
                 rng: Optional[random.Random] = None, sleep: Callable[[float], None] = time.sleep):
        self.cfg = cfg or ExecutionConfig()
        self._clock = clock
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._lock = threading.Lock()
        self._id_counter = 0

    def _next_id(self) -> str:
        with self._lock:
            self._id_counter += 1
            return f"paper-{self._id_counter}"

    def execute(self, order: OrderRequest) -> ExecutedOrder:
        if order.price <= 0 or order.size <= 0:
            raise ValueError("invalid_price_or_size")

        if self.cfg.fill_delay_ms > 0:
            self._sleep(self.cfg.fill_delay_ms / 1000.0)

        slip = self._rng.uniform(-self.cfg.max_slippage, self.cfg.max_slippage) if self.cfg.max_slippage > 0 else 0.0
        filled = max(MIN_FILL_PRICE, min(MAX_FILL_PRICE, order.price + slip))
        return ExecutedOrder(
            **order.model_dump(),
            id=self._next_id(),
            timestamp=self._clock(),
            filled_price=filled,
        )
