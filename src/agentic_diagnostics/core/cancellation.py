"""Cooperative cancellation shared by every blocking wait in the engine.

A ``CancelToken`` is created per turn by the caller and passed down to the rate
limiter, the retry backoff, the model call and the tool workers. Whatever
triggers it (SIGINT, a keypress, a deadline) lives outside the engine.
"""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable
from typing import Any, TypeVar

from agentic_diagnostics.errors import UserCancelError

T = TypeVar("T")

DEFAULT_POLL_INTERVAL = 0.05


class CancelToken:
    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason = ""

    def cancel(self, reason: str = "canceled by user") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        with self._lock:
            return self._reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise UserCancelError(self.reason)

    def wait(self, seconds: float) -> bool:
        """Block up to ``seconds``; return True if the token was cancelled meanwhile."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)


def sleep(seconds: float, token: CancelToken | None) -> None:
    """Sleep for ``seconds`` unless ``token`` is cancelled first."""
    if token is None:
        if seconds > 0:
            time.sleep(seconds)
        return
    if token.wait(seconds):
        raise UserCancelError(token.reason)


def run_cancellable(
    fn: Callable[[], T],
    token: CancelToken | None,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> T:
    """Run a blocking call on a daemon thread so cancellation can unblock the caller.

    The abandoned call keeps running in the background until it returns; its
    result is discarded.
    """
    if token is None:
        return fn()
    token.raise_if_cancelled()

    outbox: queue.Queue[tuple[str, Any]] = queue.Queue(maxsize=1)

    def _run() -> None:
        try:
            outbox.put(("ok", fn()))
        except BaseException as exc:  # noqa: BLE001
            outbox.put(("err", exc))

    thread = threading.Thread(target=_run, daemon=True, name="cancellable-call")
    thread.start()
    interval = poll_interval if poll_interval > 0 else DEFAULT_POLL_INTERVAL
    while True:
        try:
            kind, payload = outbox.get(timeout=interval)
        except queue.Empty:
            if token.is_cancelled:
                raise UserCancelError(token.reason) from None
            continue
        if kind == "err":
            raise payload
        return payload
