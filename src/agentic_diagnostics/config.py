"""Engine configuration.

``EngineConfig`` is a frozen value handed to the request engine, the turn
orchestrator and the session. ``EngineConfig.from_env()`` reads ``DIAG_<FIELD>``
variables (``DIAG_MAX_RETRIES``, ``DIAG_PARALLEL_TOOL_CALLS`` ...) after loading
the repo-level ``.env``. Unparseable values fall back to the field default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[2]
ENV_PREFIX = "DIAG_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def default_artifact_dir() -> str:
    return str(Path.home() / ".agentic-diagnostics" / "tool-output")


@dataclass(frozen=True)
class EngineConfig:
    # Provider selection; empty means "first configured provider".
    provider: str = ""
    model: str = ""

    # Request engine.
    max_retries: int = 3
    initial_backoff_seconds: float = 10.0
    backoff_factor: float = 3.0
    throttle_requests_per_minute: int = 60
    throttle_delay_seconds: float = 0.0
    skip_waits: bool = False
    max_output_tokens: int = 0

    # Tool loop budgets. Zero disables the corresponding limit.
    tools_enabled: bool = True
    max_tool_calls: int = 10
    max_tool_calls_total: int = 40
    tool_result_budget_bytes: int = 200_000
    stall_threshold: int = 2
    loop_cycle_threshold: int = 4
    no_progress_threshold: int = 2
    tool_repeat_limit: int = 3
    cache_tool_results: bool = True
    parallel_tool_calls: int = 4

    # Model-visible output shaping and artifact persistence.
    tool_result_max_chars_for_model: int = 8000
    tool_output_max_lines: int = 40
    tool_output_max_line_len: int = 140
    artifact_dir: str = ""

    # Runtime.
    poll_interval_seconds: float = 0.05
    kubectl_binary: str = "kubectl"
    command_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if not self.artifact_dir:
            object.__setattr__(self, "artifact_dir", default_artifact_dir())

    @classmethod
    def from_env(cls, env_file: str | Path | None = None, **overrides: Any) -> EngineConfig:
        load_dotenv(dotenv_path=env_file or ROOT_DIR / ".env")
        values: dict[str, Any] = {}
        defaults = cls()
        for item in fields(cls):
            raw = os.getenv(ENV_PREFIX + item.name.upper())
            if raw is None or not raw.strip():
                continue
            parsed = _coerce(raw.strip(), getattr(defaults, item.name))
            if parsed is not None:
                values[item.name] = parsed
        values.update(overrides)
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> EngineConfig:
        return replace(self, **overrides)


def _coerce(raw: str, default: Any) -> Any:
    """Parse ``raw`` into the type of ``default``; ``None`` when it does not parse."""
    if isinstance(default, bool):
        lowered = raw.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        return None
    if isinstance(default, int):
        try:
            value = int(raw)
        except ValueError:
            return None
        return value if value >= 0 else None
    if isinstance(default, float):
        try:
            value = float(raw)
        except ValueError:
            return None
        return value if value >= 0 else None
    return raw
