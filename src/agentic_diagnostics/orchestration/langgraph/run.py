from __future__ import annotations

"""CLI entrypoint for a single diagnostic turn.

    python -m agentic_diagnostics.orchestration.langgraph.run "why is my pod pending?"
"""

import argparse
import signal
import sys

from agentic_diagnostics import observability
from agentic_diagnostics.config import EngineConfig
from agentic_diagnostics.core.cancellation import CancelToken
from agentic_diagnostics.core.llm_provider import build_provider
from agentic_diagnostics.core.rate_limiter import RateLimiter
from agentic_diagnostics.core.session import ChatSession
from agentic_diagnostics.errors import AgentError, UserCancelError
from agentic_diagnostics.schemas import ToolProgressEvent
from agentic_diagnostics.tools.registry import build_tool_registry

DEFAULT_SYSTEM_PROMPT = (
    "You are an expert Kubernetes administrator helping a user diagnose cluster issues. "
    "Use the kubectl tool to gather evidence with read-only commands, then explain the "
    "root cause and the recommended fix concisely."
)


def _print_progress(event: ToolProgressEvent) -> None:
    suffix = f" ({event.detail})" if event.detail else ""
    print(f"  [{event.status}] round {event.round_index} {event.name}{suffix}", file=sys.stderr)


def _print_content(text: str) -> None:
    print(text.strip())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run one tool-assisted diagnostic turn.")
    parser.add_argument("prompt", help="User question for the assistant.")
    parser.add_argument("--provider", default=None, help="ollama, groq or openai.")
    parser.add_argument("--model", default=None, help="Model name override.")
    parser.add_argument("--no-tools", action="store_true", help="Disable tool calling.")
    parser.add_argument("--system-prompt", default=DEFAULT_SYSTEM_PROMPT)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    overrides = {}
    if args.no_tools:
        overrides["tools_enabled"] = False
    config = EngineConfig.from_env(**overrides)

    provider = build_provider(args.provider or config.provider or None, args.model or config.model or None)
    session = ChatSession(
        config,
        provider,
        tools=build_tool_registry(config),
        rate_limiter=RateLimiter.from_config(config),
        on_content=_print_content,
        on_progress=_print_progress,
        on_notice=lambda text: print(text, file=sys.stderr),
    )

    token = CancelToken()
    previous = signal.signal(signal.SIGINT, lambda *_: token.cancel("canceled by user"))
    try:
        answer = session.chat(args.prompt, system_prompt=args.system_prompt, cancel=token)
    except UserCancelError:
        print("Cancelled.")
        return 130
    except AgentError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        signal.signal(signal.SIGINT, previous)
        observability.flush()

    for item in session.events[-1].tool_calls:
        print(f"TOOL {item.name} args={item.args} bytes={item.result_bytes}")
        if item.artifact_path:
            print(f"  artifact={item.artifact_path} sha256={item.artifact_sha256}")
    metrics = session.last_metrics
    print(
        "METRICS:",
        f"calls={metrics.total_tool_calls}",
        f"unique={metrics.unique_signatures}",
        f"repeated={metrics.repeated_calls}",
        f"cache_hits={metrics.cache_hits}",
        f"stop_reason={metrics.stop_reason or '-'}",
    )
    result = session.last_result
    if result is None or not (result.content_shown and result.displayed_text == answer):
        print("ANSWER:", answer)
    return 0


if __name__ == "__main__":
    sys.exit(main())
