"""Model-invocation adapters.

Every provider exposes one ``generate(messages, options)`` contract returning a
``ModelResponse``. SDK exceptions are left to propagate so the request engine's
retry policy can classify them.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

from dotenv import load_dotenv
from groq import Groq
from openai import OpenAI

from agentic_diagnostics.schemas import (
    GenerateOptions,
    ModelChoice,
    ModelResponse,
    ToolInvocationRequest,
)

ROOT_DIR = Path(__file__).resolve().parents[3]
load_dotenv(dotenv_path=ROOT_DIR / ".env")

ChatMessage = dict[str, Any]


def _resolve_ollama_base_url(base_url: str | None = None) -> str:
    """Resolve Ollama OpenAI-compatible endpoint from explicit args/env."""
    if base_url:
        return base_url
    explicit = os.getenv("OLLAMA_BASE_URL")
    if explicit:
        return explicit

    host = (os.getenv("OLLAMA_HOST") or "").strip().rstrip("/")
    if host:
        return host if host.endswith("/v1") else f"{host}/v1"
    return "http://localhost:11434/v1"


class ChatProvider(Protocol):
    """Model-invocation capability consumed by the request engine."""

    provider_name: str
    model: str

    def generate(
        self, messages: Sequence[ChatMessage], options: GenerateOptions | None = None
    ) -> ModelResponse:
        ...


def build_request_kwargs(
    model: str, messages: Sequence[ChatMessage], options: GenerateOptions | None
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"model": model, "messages": list(messages)}
    if options is None:
        return kwargs
    if options.temperature is not None:
        kwargs["temperature"] = options.temperature
    if options.max_tokens:
        kwargs["max_tokens"] = options.max_tokens
    if options.tools:
        kwargs["tools"] = list(options.tools)
        kwargs["tool_choice"] = options.tool_choice
    return kwargs


def parse_completion(completion: Any) -> ModelResponse:
    """Map an OpenAI-style chat completion into a ``ModelResponse``."""
    choices: list[ModelChoice] = []
    for choice in getattr(completion, "choices", None) or []:
        message = getattr(choice, "message", None)
        if message is None:
            continue
        calls: list[ToolInvocationRequest] = []
        for call in getattr(message, "tool_calls", None) or []:
            function = getattr(call, "function", None)
            calls.append(
                ToolInvocationRequest(
                    id=getattr(call, "id", None) or "",
                    name=(getattr(function, "name", None) or "") if function else "",
                    raw_arguments=(getattr(function, "arguments", None) or "") if function else "",
                )
            )
        choices.append(ModelChoice(content=getattr(message, "content", None) or "", tool_calls=calls))
    return ModelResponse(choices=choices)


class _CompletionsProvider:
    provider_name = ""

    def __init__(self, client: Any, model: str) -> None:
        self.client = client
        self.model = model

    def generate(
        self, messages: Sequence[ChatMessage], options: GenerateOptions | None = None
    ) -> ModelResponse:
        completion = self.client.chat.completions.create(
            **build_request_kwargs(self.model, messages, options)
        )
        return parse_completion(completion)


class OpenAIChatProvider(_CompletionsProvider):
    provider_name = "openai"

    def __init__(self, model: str | None = None) -> None:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY not found in environment.")
        super().__init__(OpenAI(api_key=api_key), model or os.getenv("OPENAI_MODEL", "gpt-4.1-mini"))


class GroqChatProvider(_CompletionsProvider):
    provider_name = "groq"

    def __init__(self, model: str | None = None) -> None:
        api_key = os.getenv("GROQ_API_KEY")
        if not api_key:
            raise ValueError("GROQ_API_KEY not found in environment.")
        super().__init__(
            Groq(api_key=api_key), model or os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
        )


class OllamaChatProvider(_CompletionsProvider):
    """Local Ollama through its OpenAI-compatible endpoint."""

    provider_name = "ollama"

    def __init__(self, model: str | None = None, base_url: str | None = None) -> None:
        super().__init__(
            OpenAI(api_key="ollama", base_url=_resolve_ollama_base_url(base_url)),
            model or os.getenv("OLLAMA_MODEL", "llama3.1:8b"),
        )


_PROVIDERS: dict[str, type[_CompletionsProvider]] = {
    "openai": OpenAIChatProvider,
    "groq": GroqChatProvider,
    "ollama": OllamaChatProvider,
}


def build_provider(preferred: str | None = None, model: str | None = None) -> ChatProvider:
    """Build provider from explicit argument or ``DIAG_PROVIDER`` env setting."""
    explicit_provider = preferred or os.getenv("DIAG_PROVIDER")
    if explicit_provider:
        provider_cls = _PROVIDERS.get(explicit_provider.lower().strip())
        if provider_cls is None:
            raise ValueError(
                f"Unsupported provider '{explicit_provider}'. "
                "Set DIAG_PROVIDER to one of: ollama, groq, openai."
            )
        return provider_cls(model or None)

    for provider_cls in (OpenAIChatProvider, GroqChatProvider):
        try:
            return provider_cls(model or None)
        except ValueError:
            continue
    return OllamaChatProvider(model or None)
