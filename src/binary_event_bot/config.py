from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field


MarketDataMode = Literal["MOCK", "REPLAY"]


class AppConfig(BaseModel):
    poll_interval_seconds: float = Field(10.0, gt=0)
    market_data_mode: MarketDataMode = "MOCK"
    bot_enabled: bool = True


class RiskConfig(BaseModel):
    max_daily_loss_pct: float = -0.02  # -2% of base capital
    max_consecutive_losses: int = 2
    max_concurrent_events: int = 3
    max_capital_per_event_pct: float = 0.05


class StrategyConfig(BaseModel):
    entry_price_min: float = 0.86
    entry_price_max: float = 0.89
    min_hours_to_expiry_for_entry: float = 3.0
    take_profit_min: float = 0.92
    take_profit_max: float = 0.96
    force_exit_minutes_before_expiry: float = 30.0
    max_entry_tranches_per_event: int = 2
    stop_loss_drop_pct_in_minutes: float = -0.06
    stop_loss_window_minutes: float = 10.0
    volume_spike_multiple: float = 2.0  # reserved for live data, not applied
    max_volatility_30m_for_entry: float = 0.01
    first_entry_size: float = 0.03
    add_entry_size: float = 0.015


class ExecutionConfig(BaseModel):
    max_slippage: float = Field(0.0, ge=0)
    fill_delay_ms: float = Field(0.0, ge=0)


class MockConfig(BaseModel):
    seconds_per_tick: float = 10.0
    seed: Optional[int] = None


class ReplayConfig(BaseModel):
    file_path: Optional[str] = None
    replays_dir: str = "data/replays"
    event_id: str = "replay-event-1"
    market_title: str = "Replay Event"
    resolution_ts: Optional[str] = None
    replay_speed: float = 60.0


class StorageConfig(BaseModel):
    events_path: str = "data/bot_events.jsonl"


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 4001


class BotConfig(BaseModel):
    base_capital_usd: float = Field(1000.0, gt=0)
    app: AppConfig = Field(default_factory=AppConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    mock: MockConfig = Field(default_factory=MockConfig)
    replay: ReplayConfig = Field(default_factory=ReplayConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


def load_config(path: Optional[str] = None) -> BotConfig:
    if path is None:
        return BotConfig()
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)
    return BotConfig.model_validate(yaml.safe_load(p.read_text()) or {})
