from __future__ import annotations

"""LangGraph turn orchestrator.

Drives one user turn through ``plan -> execute_tools -> integrate`` rounds until
the model stops asking for tools or a loop budget fires, in which case a
``finalize`` request asks for an answer from the evidence gathered so far.
Each node is a method taking and returning ``TurnState`` so it can be driven in
isolation; the conditional edges are the transition table.
"""

import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from langgraph.graph import END, START, StateGraph

from agentic_diagnostics.config import EngineConfig
from agentic_diagnostics.core.cancellation import CancelToken
from agentic_diagnostics.core.rate_limiter import RateLimiter
from agentic_diagnostics.core.request_engine import RequestEngine
from agentic_diagnostics.errors import StateMachineError
from agentic_diagnostics.logger import get_logger
from agentic_diagnostics.observability import observe
from agentic_diagnostics.orchestration.langgraph.artifacts import (
    ArtifactStore,
    append_artifact_reference,
)
from agentic_diagnostics.orchestration.langgraph.budget import LoopBudgetTracker
from agentic_diagnostics.orchestration.langgraph.call_preparation import (
    ensure_call_ids,
    prepare_calls,
)
from agentic_diagnostics.orchestration.langgraph.executor import ParallelToolExecutor
from agentic_diagnostics.orchestration.langgraph.state_schema import (
    TurnPhase,
    TurnState,
    ensure_turn_defaults,
    new_turn_state,
)
from agentic_diagnostics.schemas import (
    GenerateOptions,
    LoopMetrics,
    ModelResponse,
    ToolCallData,
    ToolInvocationRequest,
    ToolProgressEvent,
)
from agentic_diagnostics.tools.registry import ToolExecutor

FINALIZE_NOTE = (
    "Tool execution has been stopped due to policy/budget limits. "
    "Use available evidence to provide the best final answer. Do not request additional tool calls. "
    "Stop reason: {reason}"
)
NOT_EXECUTED_NOTE = "Tool call not executed: {reason}"

# Transition table: state -> allowed next states.
TRANSITIONS: dict[TurnPhase, tuple[TurnPhase, ...]] = {
    TurnPhase.PLAN: (TurnPhase.EXECUTE_TOOLS, TurnPhase.FINALIZE, TurnPhase.DONE),
    TurnPhase.EXECUTE_TOOLS: (TurnPhase.INTEGRATE, TurnPhase.DONE),
    TurnPhase.INTEGRATE: (TurnPhase.PLAN, TurnPhase.FINALIZE),
    TurnPhase.FINALIZE: (TurnPhase.DONE,),
}


@dataclass
class TurnResult:
    response: ModelResponse
    final_answer: str
    tool_calls: list[ToolCallData] = field(default_factory=list)
    metrics: LoopMetrics = field(default_factory=LoopMetrics)
    content_shown: bool = False
    displayed_text: str = ""
    transitions: list[tuple[str, str]] = field(default_factory=list)
    messages: list[dict[str, Any]] = field(default_factory=list)

    @property
    def stop_reason(self) -> str:
        return self.metrics.stop_reason


def tool_call_message(call: ToolInvocationRequest) -> dict[str, Any]:
    return {
        "id": call.id,
        "type": "function",
        "function": {"name": call.name, "arguments": call.raw_arguments or "{}"},
    }


class TurnOrchestrator:
    """State-graph driver for the tool-calling loop of one turn."""

    def __init__(
        self,
        *,
        request_engine: RequestEngine,
        tools: ToolExecutor,
        config: EngineConfig | None = None,
        rate_limiter: RateLimiter | None = None,
        artifact_store: ArtifactStore | None = None,
        on_transition: Callable[[str, str], None] | None = None,
        on_content: Callable[[str], None] | None = None,
        on_progress: Callable[[ToolProgressEvent], None] | None = None,
    ) -> None:
        self.config = config or request_engine.config
        self.request_engine = request_engine
        self.tools = tools
        self.rate_limiter = rate_limiter or request_engine.rate_limiter
        self.executor = ParallelToolExecutor(tools, self.config, self.rate_limiter)
        self.artifacts = artifact_store or ArtifactStore(self.config)
        self.on_transition = on_transition
        self.on_content = on_content
        self.on_progress = on_progress
        self.logger = get_logger("langgraph.orchestrator")
        self._compiled = self._compile_graph()

    def _compile_graph(self):
        """Compile runtime graph topology: plan -> execute_tools -> integrate -> (plan | finalize)."""
        builder = StateGraph(TurnState)
        builder.add_node(TurnPhase.PLAN.value, self._plan)
        builder.add_node(TurnPhase.EXECUTE_TOOLS.value, self._execute_tools)
        builder.add_node(TurnPhase.INTEGRATE.value, self._integrate)
        builder.add_node(TurnPhase.FINALIZE.value, self._finalize)
        builder.add_edge(START, TurnPhase.PLAN.value)
        for phase, targets in TRANSITIONS.items():
            builder.add_conditional_edges(
                phase.value,
                self._route,
                {target.value: (END if target == TurnPhase.DONE else target.value) for target in targets},
            )
        return builder.compile()

    def _recursion_limit(self) -> int:
        rounds = self.config.max_tool_calls or self.config.max_tool_calls_total
        if not rounds:
            # No round cap; the loop-health checks and the model end the turn.
            return sys.maxsize
        return rounds * 3 + 10

    def _route(self, state: TurnState) -> str:
        return state["phase"]

    def _transition(self, state: TurnState, target: TurnPhase) -> TurnState:
        current = state["phase"]
        allowed = TRANSITIONS.get(current, ())
        if target not in allowed:
            raise StateMachineError(f"illegal transition {current} -> {target.value}")
        state["transitions"].append((current, target.value))
        if self.on_transition is not None:
            self.on_transition(current, target.value)
        self.logger.debug("TRANSITION %s -> %s", current, target.value)
        state["phase"] = target.value
        return state

    def _emit_progress(self, event: ToolProgressEvent) -> None:
        if self.on_progress is not None:
            self.on_progress(event)

    def _tracker(self, state: TurnState) -> LoopBudgetTracker:
        return LoopBudgetTracker(self.config, state["budget"])

    @observe("orchestrator.run")
    def run(
        self,
        messages: list[dict[str, Any]],
        first_response: ModelResponse,
        options: GenerateOptions | None = None,
        cancel: CancelToken | None = None,
    ) -> TurnResult:
        """Run the tool loop starting from the model's first response.

        The returned ``TurnResult.messages`` is the transcript extended with the
        assistant tool-call messages and tool results of every round.
        """
        state = new_turn_state(list(messages), first_response, options, cancel)
        final_state: TurnState = self._compiled.invoke(
            state, config={"recursion_limit": self._recursion_limit()}
        )
        return self.result_from_state(final_state)

    def result_from_state(self, state: TurnState) -> TurnResult:
        response = state["response"]
        answer = state["final_answer"] or response.content
        return TurnResult(
            response=response,
            final_answer=answer,
            tool_calls=list(state["tool_calls"]),
            metrics=self._tracker(state).metrics(),
            content_shown=state["content_shown"],
            displayed_text=state["displayed_text"],
            transitions=list(state["transitions"]),
            messages=list(state["messages"]),
        )

    def _plan(self, state: TurnState) -> TurnState:
        """Decide whether the latest response ends the turn, triggers tools, or must finalize."""
        state = ensure_turn_defaults(state)
        response = state["response"]
        calls = response.tool_calls
        if not calls:
            return self._transition(state, TurnPhase.DONE)

        content = response.content
        if content.strip() and not (state["content_shown"] and content == state["displayed_text"]):
            if self.on_content is not None:
                self.on_content(content)
            state["content_shown"] = True
            state["displayed_text"] = content

        tracker = self._tracker(state)
        if not tracker.check_iteration_cap():
            tracker.observe_plan(calls)
        if not tracker.stopped:
            calls = tracker.apply_total_budget(calls)
        if tracker.stopped:
            self.logger.warning("PLAN STOP reason=%s", tracker.stop_reason)
            return self._transition(state, TurnPhase.FINALIZE)

        state["round_index"] += 1
        round_index = state["round_index"]
        self.logger.info(
            "PLAN ROUND round=%s calls=%s iteration=%s/%s",
            round_index,
            len(calls),
            state["budget"].tool_call_iterations + 1,
            self.config.max_tool_calls,
        )

        calls = ensure_call_ids(calls)
        state["messages"].append(
            {
                "role": "assistant",
                "content": content,
                "tool_calls": [tool_call_message(call) for call in calls],
            }
        )

        preparation = prepare_calls(calls, tracker, round_index, self.config.cache_tool_results)
        for item in preparation.prepared:
            self._emit_progress(
                ToolProgressEvent(
                    call_id=item.call_id,
                    name=item.name,
                    status="started",
                    round_index=round_index,
                )
            )
        state["pending_calls"] = preparation.prepared
        state["skipped_calls"] = preparation.skipped
        state["executed_calls"] = []
        return self._transition(state, TurnPhase.EXECUTE_TOOLS)

    def _execute_tools(self, state: TurnState) -> TurnState:
        """Run the admitted calls; cancellation and fatal errors propagate out of the graph."""
        state = ensure_turn_defaults(state)
        state["executed_calls"] = self.executor.execute_batch(
            state["pending_calls"], state["result_cache"], state["cancel"]
        )
        return self._transition(state, TurnPhase.INTEGRATE)

    def _integrate(self, state: TurnState) -> TurnState:
        """Fold executed results into the transcript and decide whether to continue."""
        state = ensure_turn_defaults(state)
        tracker = self._tracker(state)
        tracker.begin_round()

        for executed in state["executed_calls"]:
            item = executed.prepared
            self._emit_progress(
                ToolProgressEvent(
                    call_id=item.call_id,
                    name=item.name,
                    status="failed" if executed.failed else "completed",
                    round_index=item.round_index,
                    detail=str(executed.error) if executed.error is not None else "",
                )
            )

            ref = self.artifacts.resolve(item.name, item.signature, executed.result_text, state["artifact_cache"])
            path = ref.path if ref else ""
            digest = ref.sha256 if ref else ""
            state["tool_calls"].append(
                ToolCallData(
                    name=item.name,
                    args=item.args,
                    result=append_artifact_reference(executed.result_text, path, digest),
                    result_bytes=len(executed.result_text.encode("utf-8")),
                    artifact_path=path,
                    artifact_sha256=digest,
                )
            )
            tracker.record_result(item.signature, executed.result_text, executed.cache_hit)
            state["messages"].append(
                {
                    "role": "tool",
                    "tool_call_id": item.call_id,
                    "name": item.name,
                    "content": self.artifacts.model_view(item.name, executed.result_text, ref),
                }
            )

        for call in state["skipped_calls"]:
            state["messages"].append(
                {
                    "role": "tool",
                    "tool_call_id": call.id,
                    "name": call.name,
                    "content": NOT_EXECUTED_NOTE.format(reason=tracker.stop_reason or "tool loop stopped"),
                }
            )

        tracker.finish_round()
        state["pending_calls"] = []
        state["skipped_calls"] = []

        if tracker.stopped:
            return self._transition(state, TurnPhase.FINALIZE)

        self.logger.info("FOLLOW-UP PROVIDER CALL round=%s", state["round_index"])
        state["response"] = self.request_engine.generate(
            state["messages"], state["options"], state["cancel"]
        )
        return self._transition(state, TurnPhase.PLAN)

    def _finalize(self, state: TurnState) -> TurnState:
        """Ask once more for an answer with tools forbidden; synthesize one if it comes back empty."""
        state = ensure_turn_defaults(state)
        reason = state["budget"].stop_reason.strip()
        note = FINALIZE_NOTE.format(reason=reason)
        final_messages = [*state["messages"], {"role": "system", "content": note}]

        options = state["options"]
        if options.tools:
            options = options.model_copy(update={"tool_choice": "none"})

        self.logger.info("FINALIZE PROVIDER CALL reason=%s", reason)
        response = self.request_engine.generate(final_messages, options, state["cancel"])
        state["response"] = response
        answer = response.content
        if not answer.strip():
            answer = f"Stopped tool execution: {reason}"
        state["final_answer"] = answer
        return self._transition(state, TurnPhase.DONE)
