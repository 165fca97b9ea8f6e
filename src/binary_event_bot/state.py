from collections import deque
from typing import Any, Deque, Dict, List, Optional

from pydantic import BaseModel, Field

from binary_event_bot.models import (
    EventPhaseState,
    ExecutedOrder,
    LogEntry,
    MarketSnapshot,
    Position,
    PriceSnapshot,
)

LOG_CAPACITY = 200


class RuntimeState(BaseModel):
    """Mutable ledger owned by one engine.

    Only the engine writes to it, under its lock. Readers get copies through
    ``snapshot()``.
    """

    bot_enabled: bool = True
    positions: List[Position] = Field(default_factory=list)
    executed_orders: List[ExecutedOrder] = Field(default_factory=list)
    realized_pnl_usd: float = 0.0
    event_phases: Dict[str, EventPhaseState] = Field(default_factory=dict)
    prices: List[PriceSnapshot] = Field(default_factory=list)
    logs: Deque[LogEntry] = Field(default_factory=deque)
    last_log_id: int = 0

    def open_positions(self) -> List[Position]:
        return [p for p in self.positions if not p.closed]

    def append_log(
        self,
        level: str,
        message: str,
        ts: float,
        event_id: Optional[str] = None,
        trigger: Optional[str] = None,
        snapshot: Optional[MarketSnapshot] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> LogEntry:
        self.last_log_id += 1
        entry = LogEntry(
            id=self.last_log_id,
            timestamp=ts,
            level=level,
            event_id=event_id,
            message=message,
            decision_trigger=trigger,
            market_snapshot=snapshot,
            payload=payload or {},
        )
        while len(self.logs) >= LOG_CAPACITY:
            self.logs.popleft()
        self.logs.append(entry)
        return entry

    def update_event_phase(self, event_id: str, phase: str, ts: float) -> None:
        self.event_phases[event_id] = EventPhaseState(event_id=event_id, phase=phase, updated_at=ts)

    def update_prices(self, prices: List[PriceSnapshot]) -> None:
        self.prices = list(prices)

    def reset(self) -> None:
        # bot_enabled is an operator setting and survives a scenario reset
        self.positions = []
        self.executed_orders = []
        self.realized_pnl_usd = 0.0
        self.event_phases = {}
        self.prices = []
        self.logs = deque()
        self.last_log_id = 0

    def snapshot(self) -> dict:
        return self.model_dump(mode="json")
