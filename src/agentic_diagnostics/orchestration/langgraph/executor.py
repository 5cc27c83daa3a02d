"""Bounded-concurrency execution of one round's prepared tool calls."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, replace

from agentic_diagnostics.config import EngineConfig
from agentic_diagnostics.core.cancellation import CancelToken, run_cancellable
from agentic_diagnostics.core.rate_limiter import RateLimiter
from agentic_diagnostics.errors import UserCancelError, is_user_cancel
from agentic_diagnostics.logger import get_logger
from agentic_diagnostics.orchestration.langgraph.call_preparation import (
    PreparedCall,
    collapse_duplicates,
)
from agentic_diagnostics.orchestration.langgraph.result_cache import ResultCache
from agentic_diagnostics.tools.registry import ToolExecutor


@dataclass(frozen=True)
class ExecutedCall:
    prepared: PreparedCall
    result_text: str
    error: BaseException | None = None
    cache_hit: bool = False

    @property
    def failed(self) -> bool:
        return self.error is not None


def format_tool_error(tool_name: str, err: BaseException) -> str:
    return f"Error executing tool '{tool_name}': {err}"


class ParallelToolExecutor:
    """Run prepared calls through the tool-execution capability.

    Results come back in input order. Same-round duplicates are executed once
    and copied from their leader as cache hits; signatures already in the
    turn's ``ResultCache`` are not executed at all.
    """

    def __init__(
        self,
        tools: ToolExecutor,
        config: EngineConfig,
        rate_limiter: RateLimiter,
    ) -> None:
        self.tools = tools
        self.config = config
        self.rate_limiter = rate_limiter
        self.logger = get_logger("executor")

    def execute_batch(
        self,
        prepared: list[PreparedCall],
        cache: ResultCache,
        cancel: CancelToken | None = None,
    ) -> list[ExecutedCall]:
        if not prepared:
            return []
        unique, duplicate_of = collapse_duplicates(prepared)
        unique_results = self._execute_unique([prepared[idx] for idx in unique], cache, cancel)

        results: list[ExecutedCall | None] = [None] * len(prepared)
        for position, original_idx in enumerate(unique):
            results[original_idx] = unique_results[position]
        for duplicate_idx, leader_idx in duplicate_of.items():
            leader = results[leader_idx]
            results[duplicate_idx] = replace(leader, prepared=prepared[duplicate_idx], cache_hit=True)
        if duplicate_of:
            self.logger.debug("ROUND DEDUP collapsed=%s", len(duplicate_of))
        return [item for item in results if item is not None]

    def _parallelism(self, size: int) -> int:
        return min(max(1, self.config.parallel_tool_calls), size)

    def _execute_unique(
        self,
        prepared: list[PreparedCall],
        cache: ResultCache,
        cancel: CancelToken | None,
    ) -> list[ExecutedCall]:
        if not prepared:
            return []
        parallel = self._parallelism(len(prepared))

        if parallel == 1:
            return [self._execute_one(item, cache, cancel, throttle=True) for item in prepared]

        self.rate_limiter.acquire(cancel, skip_waits=self.config.skip_waits)

        results: list[ExecutedCall | None] = [None] * len(prepared)
        jobs: queue.Queue[int] = queue.Queue()
        for idx in range(len(prepared)):
            jobs.put(idx)
        failures: list[BaseException] = []
        failures_lock = threading.Lock()

        def _worker() -> None:
            while True:
                if cancel is not None and cancel.is_cancelled:
                    return
                try:
                    idx = jobs.get_nowait()
                except queue.Empty:
                    return
                try:
                    results[idx] = self._execute_one(prepared[idx], cache, cancel, throttle=False)
                except BaseException as exc:  # noqa: BLE001
                    with failures_lock:
                        failures.append(exc)
                    return

        workers = [
            threading.Thread(target=_worker, name=f"tool-worker-{n}", daemon=True)
            for n in range(parallel)
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        if failures:
            for exc in failures:
                if isinstance(exc, UserCancelError):
                    raise exc
            raise failures[0]
        if cancel is not None:
            cancel.raise_if_cancelled()
        return [item for item in results if item is not None]

    def _execute_one(
        self,
        item: PreparedCall,
        cache: ResultCache,
        cancel: CancelToken | None,
        throttle: bool,
    ) -> ExecutedCall:
        if item.cache_eligible and item.signature:
            cached = cache.get(item.signature)
            if cached is not None:
                self.logger.debug("TOOL CACHE HIT tool=%s", item.name)
                return ExecutedCall(prepared=item, result_text=cached, cache_hit=True)

        if throttle:
            self.rate_limiter.acquire(cancel, skip_waits=self.config.skip_waits)

        self.logger.info("TOOL EXEC round=%s tool=%s args=%s", item.round_index, item.name, item.args)
        try:
            result = run_cancellable(
                lambda: self.tools.execute(item.name, item.args),
                cancel,
                self.config.poll_interval_seconds,
            )
        except UserCancelError:
            raise
        except Exception as exc:  # noqa: BLE001
            if is_user_cancel(exc):
                raise UserCancelError("canceled by user") from exc
            self.logger.warning("TOOL FAILED tool=%s error=%s", item.name, exc)
            return ExecutedCall(prepared=item, result_text=format_tool_error(item.name, exc), error=exc)

        if item.cache_eligible and item.signature:
            cache.put(item.signature, result)
        return ExecutedCall(prepared=item, result_text=result)
