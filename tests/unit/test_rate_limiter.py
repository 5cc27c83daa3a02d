import unittest

from agentic_diagnostics.config import EngineConfig
from agentic_diagnostics.core.cancellation import CancelToken
from agentic_diagnostics.core.rate_limiter import RateLimiter
from agentic_diagnostics.errors import UserCancelError


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingSleeper:
    def __init__(self) -> None:
        self.calls: list[tuple[float, CancelToken | None]] = []

    def __call__(self, seconds: float, token: CancelToken | None) -> None:
        self.calls.append((seconds, token))


class RateLimiterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.sleeper = RecordingSleeper()

    def _limiter(self, rpm: int = 0, fixed: float = 0.0) -> RateLimiter:
        return RateLimiter(
            requests_per_minute=rpm,
            fixed_delay_seconds=fixed,
            clock=self.clock,
            sleeper=self.sleeper,
        )

    def test_disabled_limiter_never_waits(self) -> None:
        limiter = self._limiter()
        for _ in range(100):
            self.assertEqual(limiter.acquire(), 0.0)
        self.assertEqual(self.sleeper.calls, [])

    def test_fixed_delay_applies_to_every_call(self) -> None:
        limiter = self._limiter(rpm=60, fixed=1.5)
        token = CancelToken()
        self.assertEqual(limiter.acquire(token), 1.5)
        self.assertEqual(limiter.acquire(token), 1.5)
        self.assertEqual(self.sleeper.calls, [(1.5, token), (1.5, token)])

    def test_burst_admits_up_to_limit_then_waits(self) -> None:
        limiter = self._limiter(rpm=2)
        self.assertEqual(limiter.compute_delay(), 0.0)
        self.assertEqual(limiter.compute_delay(), 0.0)
        self.assertEqual(limiter.compute_delay(), 120.0)
        # A throttled request is not recorded in the window.
        self.assertEqual(limiter.window_size(), 2)

    def test_burst_delay_is_twice_the_remaining_window(self) -> None:
        limiter = self._limiter(rpm=2)
        limiter.compute_delay()
        self.clock.now = 30.0
        limiter.compute_delay()
        self.clock.now = 40.0
        self.assertEqual(limiter.compute_delay(), 40.0)

    def test_window_expires_old_requests(self) -> None:
        limiter = self._limiter(rpm=2)
        limiter.compute_delay()
        limiter.compute_delay()
        self.clock.now = 61.0
        self.assertEqual(limiter.compute_delay(), 0.0)
        self.assertEqual(limiter.window_size(), 1)

    def test_skip_waits_bypasses_pacing(self) -> None:
        limiter = self._limiter(fixed=5.0)
        self.assertEqual(limiter.acquire(skip_waits=True), 0.0)
        self.assertEqual(self.sleeper.calls, [])
        self.assertEqual(limiter.window_size(), 0)

    def test_cancelled_token_raises_without_delay(self) -> None:
        limiter = self._limiter()
        token = CancelToken()
        token.cancel("stop")
        with self.assertRaises(UserCancelError):
            limiter.acquire(token)

    def test_record_response_uses_clock(self) -> None:
        limiter = self._limiter()
        self.assertIsNone(limiter.last_response_at)
        self.clock.now = 12.5
        limiter.record_response()
        self.assertEqual(limiter.last_response_at, 12.5)

    def test_from_config(self) -> None:
        config = EngineConfig(throttle_requests_per_minute=30, throttle_delay_seconds=0.25, artifact_dir="unused")
        limiter = RateLimiter.from_config(config)
        self.assertEqual(limiter.requests_per_minute, 30)
        self.assertEqual(limiter.fixed_delay_seconds, 0.25)


if __name__ == "__main__":
    unittest.main()
