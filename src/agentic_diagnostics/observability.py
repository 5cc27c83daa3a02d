"""Langfuse tracing for the request engine, orchestrator runs and session turns.

When ``LANGFUSE_PUBLIC_KEY``/``LANGFUSE_SECRET_KEY`` are not set, ``observe`` is a
pass-through decorator and ``flush`` does nothing.
"""

from __future__ import annotations

import functools
import os
from collections.abc import Callable
from typing import Any, TypeVar

from langfuse import get_client
from langfuse import observe as _langfuse_observe

from agentic_diagnostics.logger import get_logger

F = TypeVar("F", bound=Callable[..., Any])

_logger = get_logger("observability")


def _is_configured() -> bool:
    """Check if Langfuse env vars are present."""
    return bool(os.getenv("LANGFUSE_SECRET_KEY") and os.getenv("LANGFUSE_PUBLIC_KEY"))


def observe(name: str | None = None) -> Callable[[F], F]:
    """Wrap a function in a Langfuse span when tracing is configured.

    Usage:
        @observe("request_engine.generate")
        def generate(...):
            ...
    """
    if _is_configured():
        return _langfuse_observe(name=name)

    def passthrough(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return fn(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return passthrough  # type: ignore[return-value]


def flush() -> None:
    """Flush pending Langfuse events. No-op if not configured."""
    if not _is_configured():
        return
    try:
        get_client().flush()
    except Exception as exc:  # noqa: BLE001
        _logger.warning("LANGFUSE FLUSH FAILED error=%s", exc)
