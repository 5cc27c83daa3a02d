from __future__ import annotations

"""Typed state contract for one orchestrated turn.

Every graph node receives and returns a ``TurnState``. The per-turn budget and
caches live in the state so a fresh turn never inherits them; the defaulting
function hardens partially populated snapshots before each node runs.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, TypedDict
from uuid import uuid4

from agentic_diagnostics.core.cancellation import CancelToken
from agentic_diagnostics.orchestration.langgraph.budget import LoopBudgetState
from agentic_diagnostics.orchestration.langgraph.call_preparation import PreparedCall
from agentic_diagnostics.orchestration.langgraph.executor import ExecutedCall
from agentic_diagnostics.orchestration.langgraph.result_cache import ArtifactCache, ResultCache
from agentic_diagnostics.schemas import (
    GenerateOptions,
    ModelResponse,
    ToolCallData,
    ToolInvocationRequest,
)


class TurnPhase(StrEnum):
    PLAN = "plan"
    EXECUTE_TOOLS = "execute_tools"
    INTEGRATE = "integrate"
    FINALIZE = "finalize"
    DONE = "done"


class TurnState(TypedDict):
    turn_id: str
    phase: str
    # Conversation sent to the model; assistant tool-call and tool messages are appended in place.
    messages: list[dict[str, Any]]
    options: GenerateOptions
    response: ModelResponse
    cancel: CancelToken | None
    round_index: int
    # Turn-scoped budget and caches.
    budget: LoopBudgetState
    result_cache: ResultCache
    artifact_cache: ArtifactCache
    # Current round.
    pending_calls: list[PreparedCall]
    skipped_calls: list[ToolInvocationRequest]
    executed_calls: list[ExecutedCall]
    # Session-visible output.
    tool_calls: list[ToolCallData]
    content_shown: bool
    displayed_text: str
    final_answer: str
    transitions: list[tuple[str, str]]


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def new_turn_state(
    messages: list[dict[str, Any]],
    response: ModelResponse,
    options: GenerateOptions | None = None,
    cancel: CancelToken | None = None,
) -> TurnState:
    return TurnState(
        turn_id=str(uuid4()),
        phase=TurnPhase.PLAN.value,
        messages=messages,
        options=options or GenerateOptions(),
        response=response,
        cancel=cancel,
        round_index=0,
        budget=LoopBudgetState(),
        result_cache=ResultCache(),
        artifact_cache=ArtifactCache(),
        pending_calls=[],
        skipped_calls=[],
        executed_calls=[],
        tool_calls=[],
        content_shown=False,
        displayed_text="",
        final_answer="",
        transitions=[],
    )


def ensure_turn_defaults(state: TurnState) -> TurnState:
    """Fill any key missing from a partially populated snapshot."""
    state.setdefault("turn_id", str(uuid4()))
    state.setdefault("phase", TurnPhase.PLAN.value)
    state.setdefault("messages", [])
    state.setdefault("options", GenerateOptions())
    state.setdefault("response", ModelResponse())
    state.setdefault("cancel", None)
    state.setdefault("round_index", 0)
    state.setdefault("budget", LoopBudgetState())
    state.setdefault("result_cache", ResultCache())
    state.setdefault("artifact_cache", ArtifactCache())
    state.setdefault("pending_calls", [])
    state.setdefault("skipped_calls", [])
    state.setdefault("executed_calls", [])
    state.setdefault("tool_calls", [])
    state.setdefault("content_shown", False)
    state.setdefault("displayed_text", "")
    state.setdefault("final_answer", "")
    state.setdefault("transitions", [])
    return state
