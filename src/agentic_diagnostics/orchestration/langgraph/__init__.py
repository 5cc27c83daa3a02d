"""LangGraph runtime surface for the tool-calling turn loop.

This package exposes only the primary orchestration primitives needed by
callers and tests.
"""

from agentic_diagnostics.orchestration.langgraph.artifacts import ArtifactStore
from agentic_diagnostics.orchestration.langgraph.budget import LoopBudgetState, LoopBudgetTracker
from agentic_diagnostics.orchestration.langgraph.call_preparation import (
    PreparedCall,
    prepare_calls,
    tool_signature,
)
from agentic_diagnostics.orchestration.langgraph.executor import ExecutedCall, ParallelToolExecutor
from agentic_diagnostics.orchestration.langgraph.graph import TurnOrchestrator, TurnResult
from agentic_diagnostics.orchestration.langgraph.result_cache import ArtifactCache, ResultCache

__all__ = [
    "ArtifactCache",
    "ArtifactStore",
    "ExecutedCall",
    "LoopBudgetState",
    "LoopBudgetTracker",
    "ParallelToolExecutor",
    "PreparedCall",
    "ResultCache",
    "TurnOrchestrator",
    "TurnResult",
    "prepare_calls",
    "tool_signature",
]
