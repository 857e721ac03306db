import math
import threading
import time
from typing import Callable, Dict, Tuple

from ..errors import RateLimited
from ..services.logging import log_event

WINDOW_SECONDS = 15 * 60

# route group -> attempts allowed per window
DEFAULT_LIMITS = {
    "login": 10,
    "sms": 5,
    "password-reset": 5,
}


class FixedWindowRateLimiter:
    """In-process fixed-window counter keyed by ``(group, client)``.

    Counters whose window has ended are swept at most once per window, so
    the table only holds clients seen within roughly the last two windows.
    """

    def __init__(self, limits: Dict[str, int] = None, window: int = WINDOW_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.limits = dict(DEFAULT_LIMITS if limits is None else limits)
        self.window = window
        self._clock = clock
        self._lock = threading.Lock()
        self._counters: Dict[Tuple[str, str], Tuple[float, int]] = {}
        self._last_sweep = clock()

    def hit(self, group: str, client: str) -> None:
        """Count one attempt; raise ``RateLimited`` once the window is full."""
        limit = self.limits.get(group)
        if limit is None:
            return
        now = self._clock()
        key = (group, client)
        with self._lock:
            if now - self._last_sweep >= self.window:
                self._sweep(now)
            started, count = self._counters.get(key, (now, 0))
            if now - started >= self.window:
                started, count = now, 0
            if count >= limit:
                raise RateLimited(max(1, math.ceil(self.window - (now - started))))
            self._counters[key] = (started, count + 1)

    def _sweep(self, now: float) -> None:
        expired = [k for k, (started, _) in self._counters.items() if now - started >= self.window]
        for k in expired:
            del self._counters[k]
        self._last_sweep = now
        if expired:
            log_event("debug", "ratelimit.swept", removed=len(expired), remaining=len(self._counters))

    def __len__(self) -> int:
        return len(self._counters)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
