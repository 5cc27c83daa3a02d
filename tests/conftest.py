"""Shared test doubles for the agentic-diagnostics test suite."""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from agentic_diagnostics.config import EngineConfig
from agentic_diagnostics.schemas import (
    GenerateOptions,
    ModelChoice,
    ModelResponse,
    ToolInvocationRequest,
)


def text_response(content: str) -> ModelResponse:
    return ModelResponse(choices=[ModelChoice(content=content)])


def tool_response(*calls: tuple[str, Any], content: str = "", with_ids: bool = True) -> ModelResponse:
    """Build a response requesting ``(name, args)`` calls; dict args are JSON-encoded."""
    requests = []
    for idx, (name, args) in enumerate(calls):
        raw = args if isinstance(args, str) else json.dumps(args)
        requests.append(
            ToolInvocationRequest(id=f"call_{idx}_{name}" if with_ids else "", name=name, raw_arguments=raw)
        )
    return ModelResponse(choices=[ModelChoice(content=content, tool_calls=requests)])


class ScriptedProvider:
    """Test provider that replays scripted responses (or raises scripted exceptions)."""

    provider_name = "scripted"
    model = "scripted-model"

    def __init__(self, script: list[ModelResponse | BaseException]) -> None:
        self._script = list(script)
        self.calls: list[tuple[list[dict[str, Any]], GenerateOptions | None]] = []
        self._lock = threading.Lock()

    def generate(self, messages, options=None):  # noqa: ANN001
        with self._lock:
            self.calls.append(([dict(item) for item in messages], options))
            index = min(len(self.calls), len(self._script)) - 1
            item = self._script[index]
        if isinstance(item, BaseException):
            raise item
        return item

    def requests_containing(self, text: str) -> int:
        return sum(
            1 for messages, _ in self.calls if any(text in str(m.get("content", "")) for m in messages)
        )


class RecordingToolExecutor:
    """Thread-safe tool double that records every execution."""

    def __init__(
        self,
        results: dict[str, str | Callable[[dict[str, Any]], str]] | None = None,
        delays: dict[str, float] | None = None,
        errors: dict[str, BaseException] | None = None,
    ) -> None:
        self.results = results or {}
        self.delays = delays or {}
        self.errors = errors or {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def execute(self, tool_name: str, args: dict[str, Any]) -> str:
        with self._lock:
            self.calls.append((tool_name, dict(args)))
        delay = self.delays.get(tool_name, 0.0)
        if delay:
            time.sleep(delay)
        if tool_name in self.errors:
            raise self.errors[tool_name]
        result = self.results.get(tool_name)
        if callable(result):
            return result(args)
        if result is not None:
            return result
        return f"{tool_name} ok {json.dumps(args, sort_keys=True)}"

    def tool_schemas(self) -> list[dict[str, Any]]:
        names = sorted(set(self.results) | {"get_pods"})
        return [
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": f"{name} test tool",
                    "parameters": {"type": "object", "properties": {}},
                },
            }
            for name in names
        ]

    def count(self, tool_name: str) -> int:
        with self._lock:
            return sum(1 for name, _ in self.calls if name == tool_name)


def fast_config(artifact_root: str | Path, **overrides: Any) -> EngineConfig:
    """Config with every wait disabled and artifacts under ``artifact_root``."""
    values: dict[str, Any] = {
        "provider": "scripted",
        "model": "scripted-model",
        "skip_waits": True,
        "throttle_requests_per_minute": 0,
        "initial_backoff_seconds": 0.0,
        "poll_interval_seconds": 0.01,
        "artifact_dir": str(Path(artifact_root) / "tool-output"),
    }
    values.update(overrides)
    return EngineConfig(**values)

