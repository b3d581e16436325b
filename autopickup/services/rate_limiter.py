from __future__ import annotations

import math
import time

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter


class PickupRateLimiter:
    """
    Per-process fixed-window attempt counter keyed by origin (client IP).

    Best-effort brute-force damping for the redemption endpoints; each worker
    process keeps its own counts.
    """

    def __init__(self, max_attempts: int = 5, window_seconds: int = 60, scope: str = "pickup"):
        if max_attempts < 1 or window_seconds < 1:
            raise ValueError("max_attempts and window_seconds must be positive")
        self.max_attempts = int(max_attempts)
        self.window_seconds = int(window_seconds)
        self.scope = scope

        self._item = RateLimitItemPerSecond(self.max_attempts, self.window_seconds)
        self._storage = MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)

    def allow(self, origin: str) -> bool:
        return self._strategy.hit(self._item, self.scope, origin)

    def retry_after(self, origin: str) -> int:
        stats = self._strategy.get_window_stats(self._item, self.scope, origin)
        if stats.remaining > 0:
            return 0
        return max(0, math.ceil(stats.reset_time - time.time()))

    def reset(self) -> None:
        self._storage.reset()
