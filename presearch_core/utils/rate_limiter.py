"""
Outbound fixed-window rate limiter for upstream API calls.

Purpose:
- Bound the number of requests sent to the search API within a window.
- Throttle, never reject: callers over the limit are suspended until the
  window rolls over.

Notes:
- Uses ``asyncio`` and in-process state only; one instance per client.
- Waiters sleep for the time remaining in the window and then re-check, so
  several callers may wake at the same reset. No FIFO ordering is promised.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class RateLimitWindow:
    window_start: float
    request_count: int
    max_requests: int
    window_ms: int

    def expired(self, now: float) -> bool:
        return (now - self.window_start) * 1000.0 >= self.window_ms

    def remaining_seconds(self, now: float) -> float:
        return max(0.0, self.window_ms / 1000.0 - (now - self.window_start))


class RateLimiter:
    """Fixed-window counter that suspends callers instead of rejecting them."""

    def __init__(
        self,
        max_requests: int = 100,
        window_ms: int = 60_000,
        *,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if window_ms <= 0:
            raise ValueError("window_ms must be > 0")
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._wall_start = time.time()
        self.window = RateLimitWindow(
            window_start=self._clock(),
            request_count=0,
            max_requests=max_requests,
            window_ms=window_ms,
        )
        self.total_waits = 0
        self._lock = asyncio.Lock()

    def _roll_window(self, now: float) -> None:
        if self.window.expired(now):
            self.window.window_start = now
            self.window.request_count = 0
            self._wall_start = time.time()

    async def permit(self) -> bool:
        """Suspend until a slot is free in the current window, then take it."""
        while True:
            async with self._lock:
                now = self._clock()
                self._roll_window(now)
                if self.window.request_count < self.window.max_requests:
                    self.window.request_count += 1
                    return True
                # Sleep outside the lock so other coroutines can observe the window
                wait_for = self.window.remaining_seconds(now)
            self.total_waits += 1
            logger.warning(
                "Rate limit reached, waiting",
                wait_seconds=round(wait_for, 3),
                max_requests=self.window.max_requests,
                window_ms=self.window.window_ms,
            )
            await self._sleep(max(0.001, wait_for))

    def stats(self) -> Dict[str, Any]:
        return {
            "currentCount": self.window.request_count,
            "maxRequests": self.window.max_requests,
            "windowMs": self.window.window_ms,
            "windowStart": datetime.fromtimestamp(self._wall_start, tz=timezone.utc).isoformat(),
            "totalWaits": self.total_waits,
        }
