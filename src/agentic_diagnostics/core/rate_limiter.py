"""Process-wide request pacing.

One ``RateLimiter`` is built per process and passed by reference to every
``RequestEngine`` so pacing is coordinated across all model calls. Two modes,
checked in order: a fixed delay before every call, or burst throttling that lets
``requests_per_minute`` calls through in a trailing 60 s window and then waits.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable

from agentic_diagnostics.config import EngineConfig
from agentic_diagnostics.core.cancellation import CancelToken, sleep
from agentic_diagnostics.logger import get_logger

WINDOW_SECONDS = 60.0


class RateLimiter:
    def __init__(
        self,
        requests_per_minute: int = 0,
        fixed_delay_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float, CancelToken | None], None] = sleep,
    ) -> None:
        self.requests_per_minute = max(0, int(requests_per_minute))
        self.fixed_delay_seconds = max(0.0, float(fixed_delay_seconds))
        self._clock = clock
        self._sleeper = sleeper
        self._lock = threading.Lock()
        self._timestamps: deque[float] = deque()
        self._last_response_at: float | None = None
        self.logger = get_logger("rate_limiter")

    @classmethod
    def from_config(cls, config: EngineConfig) -> RateLimiter:
        return cls(
            requests_per_minute=config.throttle_requests_per_minute,
            fixed_delay_seconds=config.throttle_delay_seconds,
        )

    def compute_delay(self) -> float:
        """Decide how long the next request must wait; admitted requests are recorded."""
        with self._lock:
            now = self._clock()
            if self.fixed_delay_seconds > 0:
                return self.fixed_delay_seconds
            if self.requests_per_minute <= 0:
                return 0.0

            while self._timestamps and now - self._timestamps[0] >= WINDOW_SECONDS:
                self._timestamps.popleft()

            if len(self._timestamps) < self.requests_per_minute:
                self._timestamps.append(now)
                return 0.0

            oldest = self._timestamps[0]
            delay = 2 * (oldest + WINDOW_SECONDS - now)
            if delay <= 0:
                self._timestamps.append(now)
                return 0.0
            self.logger.info(
                "BURST THROTTLE window=%s/%s delay=%.2fs",
                len(self._timestamps),
                self.requests_per_minute,
                delay,
            )
            return delay

    def acquire(self, token: CancelToken | None = None, skip_waits: bool = False) -> float:
        """Wait out the pacing delay. Returns the delay that applied."""
        if skip_waits:
            return 0.0
        delay = self.compute_delay()
        if delay > 0:
            self.logger.info("THROTTLE WAIT delay=%.2fs", delay)
            self._sleeper(delay, token)
        elif token is not None:
            token.raise_if_cancelled()
        return delay

    def record_response(self) -> None:
        with self._lock:
            self._last_response_at = self._clock()

    @property
    def last_response_at(self) -> float | None:
        with self._lock:
            return self._last_response_at

    def window_size(self) -> int:
        with self._lock:
            return len(self._timestamps)
