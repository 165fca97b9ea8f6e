from abc import ABC, abstractmethod
from typing import List, Optional

from binary_event_bot.models import MarketTick, PricePoint


class MarketDataFeed(ABC):
    """Tick source shared by the Mock and Replay modes.

    Playback controls are no-ops unless a feed overrides them.
    """

    mode = ""

    @abstractmethod
    def get_ticks(self) -> List[MarketTick]:
        ...

    @abstractmethod
    def get_price_history(self, event_id: str) -> List[PricePoint]:
        ...

    @abstractmethod
    def reset(self) -> None:
        ...

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def pause(self) -> None:
        pass

    def resume(self) -> None:
        pass

    def set_replay_speed(self, speed: float) -> None:
        pass

    def load_file(self, file_path: str) -> None:
        raise ValueError(f"{self.mode or type(self).__name__} feed cannot load files")

    def get_progress(self) -> Optional[dict]:
        return None
