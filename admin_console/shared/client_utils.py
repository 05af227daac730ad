from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone

from admin_console.shared.config import Settings, settings


def make_subscription_stats() -> dict:
    """
    Returns a fresh stats dictionary with zeroed counters.
    Every subscription handle calls this once in __init__.
    Keys: events_received, reconnect_count, recent_delays_ms,
          last_event_at, connected_at, client_id.
    """
    return {
        "events_received": 0,
        "reconnect_count": 0,
        "recent_delays_ms": deque(maxlen=20),
        "last_event_at": None,
        "connected_at": None,
        "client_id": None,
    }


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Bounded exponential reconnect delay.
    The first failure waits `floor_ms`; each further failure multiplies by `growth`
    until `ceiling_ms`. A successful connect puts the handle back at `floor_ms`.
    """
    floor_ms: int = 1000
    growth: float = 1.8
    ceiling_ms: int = 60000

    def __post_init__(self):
        if self.floor_ms <= 0 or self.growth < 1.0 or self.ceiling_ms < self.floor_ms:
            raise ValueError(
                f"invalid backoff floor_ms={self.floor_ms} growth={self.growth} ceiling_ms={self.ceiling_ms}"
            )

    def next(self, current_ms: int) -> int:
        return min(int(current_ms * self.growth), self.ceiling_ms)

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "BackoffPolicy":
        return cls(
            floor_ms=config.RECONNECT_FLOOR_MS,
            growth=config.RECONNECT_GROWTH,
            ceiling_ms=config.RECONNECT_CEILING_MS,
        )
