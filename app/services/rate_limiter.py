"""
Global rate limiter for the Omie API.
Omie throttles per app_key; every call goes through one bucket with a
per-second refill (settings.omie_rate_per_sec) and a sliding 60s cap
(settings.omie_max_per_min), so overlapping cron requests share the budget.
"""
import asyncio
import logging
import time
from collections import deque

from app.config import settings

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


class TokenBucket:
    """Async token bucket: refills rate_per_sec tokens/s, at most max_per_min grants per 60s."""

    def __init__(self, rate_per_sec: float = 4.0, max_per_min: int = 240, clock=time.monotonic):
        self.rate_per_sec = rate_per_sec
        self.max_per_min = max_per_min
        self._clock = clock
        self._tokens = rate_per_sec
        self._stamp = clock()
        self._granted: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _delay(self, now: float) -> float:
        """Seconds to wait before a token can be granted at `now` (0 = grant)."""
        self._tokens = min(self.rate_per_sec, self._tokens + (now - self._stamp) * self.rate_per_sec)
        self._stamp = now
        while self._granted and self._granted[0] <= now - WINDOW_SECONDS:
            self._granted.popleft()

        if len(self._granted) >= self.max_per_min:
            return self._granted[0] + WINDOW_SECONDS - now
        if self._tokens < 1.0:
            return (1.0 - self._tokens) / self.rate_per_sec
        return 0.0

    async def acquire(self):
        while True:
            async with self._lock:
                now = self._clock()
                delay = self._delay(now)
                if delay <= 0:
                    self._tokens -= 1.0
                    self._granted.append(now)
                    return
            if delay > 1.0:
                logger.debug("Omie rate limit: waiting %.1fs", delay)
            await asyncio.sleep(max(delay, 0.01))


rate_limiter = TokenBucket(
    rate_per_sec=settings.omie_rate_per_sec,
    max_per_min=settings.omie_max_per_min,
)
