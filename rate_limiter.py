import time
from dataclasses import dataclass
from typing import Callable, Dict

from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class RateWindow:
    count: int
    window_start: float


class RateLimiter:
    """Fixed-window message throttle keyed by connection id.

    A burst straddling a window boundary can reach twice the configured rate.
    """

    def __init__(self, window_seconds: float, max_messages: int, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self.max_messages = max_messages
        self.clock = clock
        self._windows: Dict[str, RateWindow] = {}

    def allow(self, connection_id: str) -> bool:
        """Count one attempt and report whether it is within the limit."""
        now = self.clock()
        window = self._windows.get(connection_id)
        if window is None:
            window = RateWindow(count=0, window_start=now)
            self._windows[connection_id] = window

        if now - window.window_start > self.window_seconds:
            window.count = 1
            window.window_start = now
            return True

        window.count += 1
        if window.count > self.max_messages:
            logger.debug(f"Connection {connection_id} over limit: {window.count}/{self.max_messages}")
            return False
        return True

    def reset(self, connection_id: str) -> None:
        self._windows.pop(connection_id, None)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._windows
