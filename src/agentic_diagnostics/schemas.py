# schemas.py

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ToolInvocationRequest(BaseModel):
    """One tool call as emitted by the model. ``id`` may be empty."""

    model_config = ConfigDict(extra="forbid")

    id: str = ""
    name: str
    raw_arguments: str = ""


class ModelChoice(BaseModel):
    content: str = ""
    tool_calls: list[ToolInvocationRequest] = Field(default_factory=list)


class ModelResponse(BaseModel):
    choices: list[ModelChoice] = Field(default_factory=list)

    def first_choice(self) -> ModelChoice | None:
        return self.choices[0] if self.choices else None

    @property
    def content(self) -> str:
        choice = self.first_choice()
        return choice.content if choice is not None else ""

    @property
    def tool_calls(self) -> list[ToolInvocationRequest]:
        choice = self.first_choice()
        return list(choice.tool_calls) if choice is not None else []

    def is_empty(self) -> bool:
        return not self.content.strip() and not self.tool_calls


class GenerateOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    temperature: float | None = None
    max_tokens: int | None = None
    tools: list[dict[str, Any]] = Field(default_factory=list)
    tool_choice: Literal["auto", "none", "required"] = "auto"


class ToolCallData(BaseModel):
    """Session-visible record of one executed tool call."""

    model_config = ConfigDict(frozen=True)

    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    result: str = ""
    result_bytes: int = 0
    artifact_path: str = ""
    artifact_sha256: str = ""


class SessionEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: str
    user_prompt: str
    tool_calls: tuple[ToolCallData, ...] = ()
    ai_response: str = ""


class LoopMetrics(BaseModel):
    total_tool_calls: int = 0
    unique_signatures: int = 0
    repeated_calls: int = 0
    cache_hits: int = 0
    stop_reason: str = ""


class ToolProgressEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    call_id: str
    name: str
    status: Literal["started", "completed", "failed"]
    round_index: int
    detail: str = ""
