from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Literal, Optional


Side = Literal["YES", "NO"]
OrderKind = Literal["LIMIT_BUY", "LIMIT_SELL", "LIMIT_EXIT", "LIMIT_STOP_LOSS"]
ExitReason = Literal["TAKE_PROFIT", "STOP_LOSS", "FORCE_EXIT"]
Phase = Literal["IDLE", "WAIT_ENTRY", "IN_POSITION", "EXITED"]
LogLevel = Literal["INFO", "WARN", "ERROR"]
DecisionTrigger = Literal["ENTRY_SIGNAL", "TAKE_PROFIT", "STOP_LOSS", "FORCE_EXIT", "RISK_REJECT", "ORDER_FILLED"]


class MarketEvent(BaseModel):
    id: str
    title: str = ""
    seconds_to_resolution: float = 0.0


class MarketTick(BaseModel):
    model_config = ConfigDict(frozen=True)

    event: MarketEvent
    yes_price: float
    no_price: float
    volume_last_30m: float = 0.0
    avg_volume_last_2h: float = 0.0
    volatility_30m: float = 0.0  # mean abs consecutive delta
    timestamp: float


class PricePoint(BaseModel):
    timestamp: float
    price: float


class ReplayRow(BaseModel):
    ts: str
    price: float
    volume: Optional[float] = None
    bid: Optional[float] = None
    ask: Optional[float] = None
    event_id: Optional[str] = None
    market_title: Optional[str] = None
    resolution_ts: Optional[str] = None
    time_to_resolution_min: Optional[float] = None


class OrderRequest(BaseModel):
    event_id: str
    side: Side
    price: float  # 0 ~ 1
    size: float  # in units of base capital
    kind: OrderKind = "LIMIT_BUY"


class ExecutedOrder(OrderRequest):
    id: str
    timestamp: float
    filled_price: float


class Position(BaseModel):
    id: str
    event_id: str
    side: Side
    avg_entry_price: float
    size: float
    open_timestamp: float
    realized_pnl_usd: float = 0.0
    unrealized_pnl_usd: float = 0.0
    closed: bool = False
    closed_timestamp: Optional[float] = None
    exit_price: Optional[float] = None
    exit_reason: Optional[ExitReason] = None

    def close(self, exit_price: float, reason: str, pnl_usd: float, ts: float) -> None:
        if self.closed:
            raise ValueError(f"position_already_closed: {self.id}")
        self.closed_timestamp = float(ts)
        self.exit_price = float(exit_price)
        self.exit_reason = reason
        self.realized_pnl_usd = float(pnl_usd)
        self.unrealized_pnl_usd = 0.0
        self.closed = True


class EventPhaseState(BaseModel):
    event_id: str
    phase: Phase
    updated_at: float


class PriceSnapshot(BaseModel):
    event_id: str
    title: str
    yes_price: float
    no_price: float
    seconds_to_resolution: float
    timestamp: float


class MarketSnapshot(BaseModel):
    event_id: str
    market_title: str = ""
    yes_price: float
    no_price: float
    volatility_30m: float
    seconds_to_resolution: float
    timestamp: float

    @classmethod
    def from_tick(cls, tick: MarketTick) -> "MarketSnapshot":
        return cls(
            event_id=tick.event.id,
            market_title=tick.event.title,
            yes_price=tick.yes_price,
            no_price=tick.no_price,
            volatility_30m=tick.volatility_30m,
            seconds_to_resolution=tick.event.seconds_to_resolution,
            timestamp=tick.timestamp,
        )


class LogEntry(BaseModel):
    id: int
    timestamp: float
    level: LogLevel
    event_id: Optional[str] = None
    message: str
    decision_trigger: Optional[DecisionTrigger] = None
    market_snapshot: Optional[MarketSnapshot] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class RiskCheckResult(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class RiskState(BaseModel):
    date: str  # YYYY-MM-DD (UTC)
    daily_realized_pnl_usd: float = 0.0
    consecutive_losses: int = 0
    active_positions: List[Position] = Field(default_factory=list)


def make_tick(event: MarketEvent, yes_price: float, timestamp: float, volatility_30m: float = 0.0,
              volume_last_30m: float = 0.0, avg_volume_last_2h: float = 0.0) -> MarketTick:
    """Build a tick with ``no_price`` derived from ``yes_price``.

    The event is copied so later countdown updates by the feed never leak into
    a tick that was already handed out.
    """
    return MarketTick(
        event=event.model_copy(),
        yes_price=float(yes_price),
        no_price=1.0 - float(yes_price),
        volume_last_30m=float(volume_last_30m),
        avg_volume_last_2h=float(avg_volume_last_2h),
        volatility_30m=float(volatility_30m),
        timestamp=float(timestamp),
    )
