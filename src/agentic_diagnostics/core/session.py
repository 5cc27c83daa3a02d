"""Long-lived conversation: history, per-turn driving and session events."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from agentic_diagnostics.config import EngineConfig
from agentic_diagnostics.core.cancellation import CancelToken
from agentic_diagnostics.core.llm_provider import ChatProvider
from agentic_diagnostics.core.rate_limiter import RateLimiter
from agentic_diagnostics.core.request_engine import RequestEngine
from agentic_diagnostics.errors import ProviderError
from agentic_diagnostics.logger import get_logger
from agentic_diagnostics.observability import observe
from agentic_diagnostics.orchestration.langgraph.graph import TurnOrchestrator, TurnResult
from agentic_diagnostics.orchestration.langgraph.state_schema import utc_now_iso
from agentic_diagnostics.schemas import (
    GenerateOptions,
    LoopMetrics,
    SessionEvent,
    ToolCallData,
    ToolProgressEvent,
)
from agentic_diagnostics.tools.registry import ToolExecutor


class ChatSession:
    """Conversation owner. One ``SessionEvent`` is appended per completed turn."""

    def __init__(
        self,
        config: EngineConfig,
        provider: ChatProvider,
        tools: ToolExecutor | None = None,
        rate_limiter: RateLimiter | None = None,
        *,
        on_content: Callable[[str], None] | None = None,
        on_progress: Callable[[ToolProgressEvent], None] | None = None,
        on_transition: Callable[[str, str], None] | None = None,
        on_notice: Callable[[str], None] | None = None,
    ) -> None:
        self.config = config
        self.provider = provider
        self.tools = tools
        self.rate_limiter = rate_limiter or RateLimiter.from_config(config)
        self.request_engine = RequestEngine(
            provider, config, self.rate_limiter, on_notice=on_notice
        )
        self.orchestrator: TurnOrchestrator | None = None
        if tools is not None:
            self.orchestrator = TurnOrchestrator(
                request_engine=self.request_engine,
                tools=tools,
                config=config,
                rate_limiter=self.rate_limiter,
                on_transition=on_transition,
                on_content=on_content,
                on_progress=on_progress,
            )
        self.history: list[dict[str, Any]] = []
        self.events: list[SessionEvent] = []
        self.last_metrics = LoopMetrics()
        self.last_result: TurnResult | None = None
        self.logger = get_logger("session")

    @property
    def tools_enabled(self) -> bool:
        return self.config.tools_enabled and self.orchestrator is not None

    @property
    def model_name(self) -> str:
        return getattr(self.provider, "model", "") or self.config.model

    @property
    def provider_name(self) -> str:
        return getattr(self.provider, "provider_name", "") or self.config.provider

    def build_options(self) -> GenerateOptions:
        options = GenerateOptions()
        if self.model_name.lower().startswith("gpt-5"):
            options.temperature = 1.0
        if self.config.max_output_tokens > 0:
            options.max_tokens = self.config.max_output_tokens
        if self.tools_enabled:
            schemas = self.tools.tool_schemas()
            if schemas:
                options.tools = schemas
                options.tool_choice = "auto"
        return options

    def reset(self) -> None:
        self.history = []
        self.last_metrics = LoopMetrics()
        self.last_result = None

    @observe("session.chat")
    def chat(
        self,
        prompt: str,
        system_prompt: str | None = None,
        cancel: CancelToken | None = None,
        history: bool = True,
    ) -> str:
        """Run one user turn and return the final answer.

        Raises ``UserCancelError`` on cancellation (no event is recorded) and
        ``ProviderError`` when the turn produced no answer at all.
        """
        self.last_metrics = LoopMetrics()
        self.last_result = None

        messages: list[dict[str, Any]] = list(self.history) if history else []
        if system_prompt and not messages:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        options = self.build_options()
        self.logger.info(
            "TURN START provider=%s model=%s tools=%s",
            self.provider_name,
            self.model_name,
            len(options.tools),
        )
        response = self.request_engine.generate(messages, options, cancel)

        tool_calls: list[ToolCallData] = []
        if self.tools_enabled:
            result = self.orchestrator.run(messages, response, options, cancel)
            self.last_result = result
            self.last_metrics = result.metrics
            answer = result.final_answer
            tool_calls = result.tool_calls
            messages = result.messages
        else:
            answer = response.content

        if not answer.strip():
            raise ProviderError(f"no content generated from {self.provider_name}")

        messages.append({"role": "assistant", "content": answer})
        if history:
            self.history = messages
        self.events.append(
            SessionEvent(
                timestamp=utc_now_iso(),
                user_prompt=prompt,
                tool_calls=tuple(tool_calls),
                ai_response=answer,
            )
        )
        if self.last_metrics.stop_reason:
            self.logger.warning("TURN STOPPED EARLY reason=%s", self.last_metrics.stop_reason)
        return answer
