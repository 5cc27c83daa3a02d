"""Tool-execution capability and the default tool registry."""

from __future__ import annotations

import json
from typing import Any, Protocol

from agentic_diagnostics.config import EngineConfig
from agentic_diagnostics.errors import ToolExecutionError, UnknownToolError
from agentic_diagnostics.tools.base import Tool
from agentic_diagnostics.tools.echo import EchoTool
from agentic_diagnostics.tools.kubectl import KubectlTool


class ToolExecutor(Protocol):
    """Must be safe to call concurrently from several workers."""

    def execute(self, tool_name: str, args: dict[str, Any]) -> str:
        ...

    def tool_schemas(self) -> list[dict[str, Any]]:
        ...


def format_tool_result(value: Any) -> str:
    """Render a tool result as text, pretty-printing anything JSON-shaped."""
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2, ensure_ascii=False, default=str)
    text = "" if value is None else str(value)
    stripped = text.strip()
    if stripped[:1] in ("{", "["):
        try:
            parsed = json.loads(stripped)
        except json.JSONDecodeError:
            return text
        return json.dumps(parsed, indent=2, ensure_ascii=False)
    return text


class ToolRegistry:
    """Name-indexed tools. Read-only after construction."""

    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            if tool.name in self._tools:
                raise ValueError(f"duplicate tool name: {tool.name}")
            self._tools[tool.name] = tool

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(f"unknown tool '{name}'")
        return tool

    def tool_schemas(self) -> list[dict[str, Any]]:
        return [tool.schema() for tool in self._tools.values()]

    def execute(self, tool_name: str, args: dict[str, Any]) -> str:
        tool = self.get(tool_name)
        try:
            result = tool.execute(dict(args))
        except (ToolExecutionError, UnknownToolError):
            raise
        except Exception as exc:  # noqa: BLE001
            raise ToolExecutionError(str(exc)) from exc
        if isinstance(result, dict) and set(result) == {"error"}:
            raise ToolExecutionError(str(result["error"]))
        return format_tool_result(result)


def build_tool_registry(config: EngineConfig | None = None) -> ToolRegistry:
    cfg = config or EngineConfig()
    return ToolRegistry(
        [
            EchoTool(),
            KubectlTool(binary=cfg.kubectl_binary, timeout_seconds=cfg.command_timeout_seconds),
        ]
    )
