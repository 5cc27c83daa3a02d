"""Loop budgets and loop-health checks for one turn.

``LoopBudgetState`` is created fresh for every user turn and only the
orchestrator thread touches it. ``LoopBudgetTracker`` holds the decisions:
iteration cap, stall and cycle detection over plan fingerprints, total-call and
result-byte budgets, the per-signature repeat limit, and evidence novelty.
The first stop reason recorded wins; later ones are ignored.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from hashlib import sha256

from agentic_diagnostics.config import EngineConfig
from agentic_diagnostics.logger import get_logger
from agentic_diagnostics.schemas import LoopMetrics, ToolInvocationRequest

PLAN_HISTORY_SIZE = 16


def plan_fingerprint(calls: list[ToolInvocationRequest]) -> str:
    """``name|args;`` per call, with all whitespace removed from the raw arguments."""
    parts = []
    for call in calls:
        args = "".join(call.raw_arguments.split())
        parts.append(f"{call.name.strip()}|{args};")
    return "".join(parts)


def detect_plan_cycle(history: list[str], current: str, max_distance: int) -> int:
    """Return how many rounds back ``current`` last appeared (2..max_distance), else 0."""
    if not current or max_distance <= 1 or not history:
        return 0
    max_distance = min(max_distance, len(history))
    for distance in range(2, max_distance + 1):
        if history[-distance] == current:
            return distance
    return 0


def evidence_hash(signature: str, result: str) -> str:
    material = f"{signature}\n{result.strip()}"
    return sha256(material.encode("utf-8")).hexdigest()


@dataclass
class LoopBudgetState:
    tool_call_iterations: int = 0
    total_tool_calls: int = 0
    total_result_bytes: int = 0
    last_plan_fingerprint: str = ""
    repeated_plan_count: int = 0
    plan_fingerprint_history: deque[str] = field(
        default_factory=lambda: deque(maxlen=PLAN_HISTORY_SIZE)
    )
    signature_counts: dict[str, int] = field(default_factory=dict)
    unique_signatures: set[str] = field(default_factory=set)
    seen_evidence_hashes: set[str] = field(default_factory=set)
    round_new_evidence: int = 0
    no_progress_rounds: int = 0
    repeated_calls: int = 0
    cache_hits: int = 0
    stop_reason: str = ""


class LoopBudgetTracker:
    def __init__(self, config: EngineConfig, state: LoopBudgetState | None = None) -> None:
        self.config = config
        self.state = state if state is not None else LoopBudgetState()
        self.logger = get_logger("budget")

    @property
    def stop_reason(self) -> str:
        return self.state.stop_reason

    @property
    def stopped(self) -> bool:
        return bool(self.state.stop_reason)

    def stop(self, reason: str) -> bool:
        """Record ``reason`` unless a stop reason is already set."""
        if self.state.stop_reason:
            return False
        self.state.stop_reason = reason
        self.logger.warning("TOOL LOOP STOP reason=%s", reason)
        return True

    # Plan-time checks, in evaluation order.

    def check_iteration_cap(self) -> bool:
        cap = self.config.max_tool_calls
        if cap > 0 and self.state.tool_call_iterations >= cap:
            return self.stop(f"maximum tool-call iteration limit reached ({cap})")
        return False

    def observe_plan(self, calls: list[ToolInvocationRequest]) -> bool:
        """Run stall then cycle detection on this round's plan and record it in history."""
        fingerprint = plan_fingerprint(calls)
        if not fingerprint:
            return False
        st = self.state
        stopped = False

        threshold = self.config.stall_threshold
        if threshold > 0:
            if fingerprint == st.last_plan_fingerprint:
                st.repeated_plan_count += 1
            else:
                st.last_plan_fingerprint = fingerprint
                st.repeated_plan_count = 0
            if st.repeated_plan_count >= threshold:
                stopped = self.stop(
                    "tool loop stalled: identical tool plan repeated "
                    f"{st.repeated_plan_count + 1} times"
                )

        if not self.stopped and self.config.loop_cycle_threshold > 0:
            distance = detect_plan_cycle(
                list(st.plan_fingerprint_history), fingerprint, self.config.loop_cycle_threshold
            )
            if distance:
                stopped = self.stop(f"tool loop cycling: plan repeated after {distance} round(s)")

        st.plan_fingerprint_history.append(fingerprint)
        return stopped

    def apply_total_budget(self, calls: list[ToolInvocationRequest]) -> list[ToolInvocationRequest]:
        """Truncate the batch to the remaining total-call allowance; stop when none is left."""
        total = self.config.max_tool_calls_total
        if total <= 0:
            return calls
        remaining = total - self.state.total_tool_calls
        if remaining <= 0:
            self.stop(f"total tool-call budget exhausted ({total})")
            return []
        if len(calls) > remaining:
            self.logger.warning(
                "TOOL BATCH TRUNCATED remaining=%s requested=%s", remaining, len(calls)
            )
            return calls[:remaining]
        return calls

    # Per-item admission during call preparation.

    def check_admission(self, pending: int) -> bool:
        """Stop when the total-call or result-byte budget leaves no room for another call."""
        total = self.config.max_tool_calls_total
        if total > 0 and self.state.total_tool_calls + pending >= total:
            return self.stop(f"total tool-call budget exhausted ({total})")
        budget = self.config.tool_result_budget_bytes
        if budget > 0 and self.state.total_result_bytes >= budget:
            return self.stop(f"tool-result budget exhausted ({budget} bytes)")
        return False

    def register_signature(self, signature: str, tool_name: str) -> bool:
        """Count a signature; stop (without counting) when its repeat limit is already reached."""
        if not signature:
            return False
        st = self.state
        if signature in st.unique_signatures:
            st.repeated_calls += 1
        else:
            st.unique_signatures.add(signature)
        limit = self.config.tool_repeat_limit
        if limit > 0 and st.signature_counts.get(signature, 0) >= limit:
            return self.stop(f"tool repeat limit reached for {tool_name} ({limit})")
        st.signature_counts[signature] = st.signature_counts.get(signature, 0) + 1
        return False

    # Integrate-time bookkeeping.

    def begin_round(self) -> None:
        self.state.round_new_evidence = 0

    def record_result(self, signature: str, result: str, cache_hit: bool) -> None:
        st = self.state
        if cache_hit:
            st.cache_hits += 1
        st.total_tool_calls += 1
        st.total_result_bytes += len(result.encode("utf-8"))

        budget = self.config.tool_result_budget_bytes
        if budget > 0 and st.total_result_bytes >= budget:
            self.stop(f"tool-result budget reached ({st.total_result_bytes}/{budget} bytes)")

        digest = evidence_hash(signature, result)
        if digest not in st.seen_evidence_hashes:
            st.seen_evidence_hashes.add(digest)
            st.round_new_evidence += 1

    def finish_round(self) -> None:
        st = self.state
        st.tool_call_iterations += 1
        threshold = self.config.no_progress_threshold
        if self.stopped or threshold <= 0:
            return
        if st.round_new_evidence == 0:
            st.no_progress_rounds += 1
            if st.no_progress_rounds >= threshold:
                self.stop(f"tool loop made no progress for {st.no_progress_rounds} round(s)")
        else:
            st.no_progress_rounds = 0

    def metrics(self) -> LoopMetrics:
        st = self.state
        return LoopMetrics(
            total_tool_calls=st.total_tool_calls,
            unique_signatures=len(st.unique_signatures),
            repeated_calls=st.repeated_calls,
            cache_hits=st.cache_hits,
            stop_reason=st.stop_reason,
        )
