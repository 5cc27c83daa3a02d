"""Read-only kubectl execution for diagnostics."""

from __future__ import annotations

import shlex
import subprocess
from typing import Any

from agentic_diagnostics.errors import ToolExecutionError
from agentic_diagnostics.logger import get_logger
from agentic_diagnostics.tools.base import Tool

DEFAULT_BLOCKED_VERBS: tuple[str, ...] = (
    "delete",
    "apply",
    "edit",
    "patch",
    "create",
    "replace",
    "set",
    "scale",
    "autoscale",
    "expose",
    "annotate",
    "label",
    "convert",
    "exec",
    "port-forward",
    "proxy",
    "run",
    "wait",
    "cordon",
    "uncordon",
    "drain",
    "attach",
    "config",
    "cp",
    "rm",
    "mv",
)


def _decode(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return str(raw)


class KubectlTool(Tool):
    name = "kubectl"
    description = (
        "Run a read-only kubectl command against the current cluster context and return its output. "
        'Required args: command (string starting with "kubectl").'
    )
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": 'Full kubectl command, e.g. "kubectl get pods -n default".',
            }
        },
        "required": ["command"],
    }

    def __init__(
        self,
        binary: str = "kubectl",
        timeout_seconds: float = 30.0,
        blocked_verbs: tuple[str, ...] = DEFAULT_BLOCKED_VERBS,
    ) -> None:
        self.binary = binary
        self.timeout_seconds = timeout_seconds
        self.blocked_verbs = blocked_verbs
        self.logger = get_logger("tools.kubectl")

    def _check_allowed(self, command: str) -> None:
        if not command.startswith("kubectl"):
            raise ToolExecutionError(f"command '{command}' must start with kubectl")
        for verb in self.blocked_verbs:
            if command.startswith(f"kubectl {verb}") or f" {verb} " in command:
                raise ToolExecutionError(f"command '{command}' is not allowed")

    def execute(self, args: dict[str, Any]) -> str:
        command = str(args.get("command", "")).strip()
        if not command:
            raise ToolExecutionError("command is required")
        self._check_allowed(command)

        try:
            argv = shlex.split(command)
        except ValueError as exc:
            raise ToolExecutionError(f"could not parse command '{command}': {exc}") from exc
        argv[0] = self.binary

        self.logger.info("KUBECTL EXEC command=%s timeout=%s", command, self.timeout_seconds)
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            partial = _decode(exc.stdout) + _decode(exc.stderr)
            timeout_msg = f"\n*** COMMAND TIMED OUT AFTER {int(self.timeout_seconds)} SECONDS ***\n"
            self.logger.warning("KUBECTL TIMEOUT command=%s", command)
            return partial + timeout_msg
        except FileNotFoundError as exc:
            raise ToolExecutionError(f"kubectl binary not found: {self.binary}") from exc

        output = (completed.stdout or "") + (completed.stderr or "")
        if completed.returncode != 0:
            raise ToolExecutionError(
                f"command '{command}' exited with status {completed.returncode}: {output.strip()}"
            )
        if not output.strip():
            return f"No output from command: {command}"
        return output
