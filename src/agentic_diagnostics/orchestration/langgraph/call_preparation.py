"""Turn a batch of model-requested tool calls into prepared work items."""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from agentic_diagnostics.logger import get_logger
from agentic_diagnostics.orchestration.langgraph.budget import LoopBudgetTracker
from agentic_diagnostics.schemas import ToolInvocationRequest

logger = get_logger("call_preparation")


@dataclass(frozen=True)
class PreparedCall:
    invocation: ToolInvocationRequest
    args: dict[str, Any]
    signature: str
    round_index: int
    cache_eligible: bool

    @property
    def name(self) -> str:
        return self.invocation.name

    @property
    def call_id(self) -> str:
        return self.invocation.id


@dataclass
class PreparationResult:
    prepared: list[PreparedCall] = field(default_factory=list)
    # Requested but not admitted because a stop condition fired mid-batch.
    skipped: list[ToolInvocationRequest] = field(default_factory=list)


def parse_arguments(tool_name: str, raw: str) -> dict[str, Any]:
    """Decode JSON arguments; anything undecodable is kept under a single ``raw`` key."""
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("MALFORMED TOOL ARGS tool=%s error=%s", tool_name, exc)
        return {"raw": raw}
    if not isinstance(parsed, dict):
        logger.warning("NON-OBJECT TOOL ARGS tool=%s", tool_name)
        return {"raw": raw}
    return parsed


def tool_signature(tool_name: str, args: dict[str, Any] | None) -> str:
    """Canonical identity of a call: ``name|<sorted-key JSON>``. Empty name gives ``""``."""
    name = tool_name.strip()
    if not name:
        return ""
    return f"{name}|{json.dumps(args or {}, sort_keys=True, default=str)}"


def ensure_call_ids(
    calls: list[ToolInvocationRequest],
    clock_ns: Callable[[], int] = time.time_ns,
) -> list[ToolInvocationRequest]:
    """Fill empty ids with ``tool_<name>_<ns>``, unique within the batch."""
    used = {call.id for call in calls if call.id}
    result: list[ToolInvocationRequest] = []
    for call in calls:
        if call.id:
            result.append(call)
            continue
        stamp = clock_ns()
        call_id = f"tool_{call.name}_{stamp}"
        while call_id in used:
            stamp += 1
            call_id = f"tool_{call.name}_{stamp}"
        used.add(call_id)
        logger.debug("GENERATED TOOL CALL ID id=%s", call_id)
        result.append(call.model_copy(update={"id": call_id}))
    return result


def prepare_calls(
    calls: list[ToolInvocationRequest],
    tracker: LoopBudgetTracker,
    round_index: int,
    cache_enabled: bool,
) -> PreparationResult:
    """Build ``PreparedCall`` items, stopping at the first budget or repeat-limit violation."""
    result = PreparationResult()
    for call in calls:
        if tracker.check_admission(pending=len(result.prepared)):
            break
        args = parse_arguments(call.name, call.raw_arguments)
        signature = tool_signature(call.name, args)
        if tracker.register_signature(signature, call.name):
            break
        result.prepared.append(
            PreparedCall(
                invocation=call,
                args=args,
                signature=signature,
                round_index=round_index,
                cache_eligible=cache_enabled,
            )
        )
    result.skipped = list(calls[len(result.prepared):])
    return result


def collapse_duplicates(prepared: list[PreparedCall]) -> tuple[list[int], dict[int, int]]:
    """Split a batch into leader indices and a duplicate-index -> leader-index map.

    Only cache-eligible calls with a signature are collapsed.
    """
    leaders: dict[str, int] = {}
    unique: list[int] = []
    duplicate_of: dict[int, int] = {}
    for idx, item in enumerate(prepared):
        if item.cache_eligible and item.signature:
            leader = leaders.get(item.signature)
            if leader is not None:
                duplicate_of[idx] = leader
                continue
            leaders[item.signature] = idx
        unique.append(idx)
    return unique, duplicate_of
