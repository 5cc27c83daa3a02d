import json
import threading
import time
import unittest

from agentic_diagnostics.config import EngineConfig
from agentic_diagnostics.core.cancellation import CancelToken
from agentic_diagnostics.core.rate_limiter import RateLimiter
from agentic_diagnostics.errors import UserCancelError
from agentic_diagnostics.orchestration.langgraph.call_preparation import PreparedCall, tool_signature
from agentic_diagnostics.orchestration.langgraph.executor import ParallelToolExecutor
from agentic_diagnostics.orchestration.langgraph.result_cache import ResultCache
from agentic_diagnostics.schemas import ToolInvocationRequest


def prepared(name: str, args: dict, call_id: str = "", cache: bool = True) -> PreparedCall:
    return PreparedCall(
        invocation=ToolInvocationRequest(id=call_id or f"call_{name}", name=name, raw_arguments=json.dumps(args)),
        args=args,
        signature=tool_signature(name, args),
        round_index=1,
        cache_eligible=cache,
    )


class CountingTools:
    def __init__(self, delays: dict[str, float] | None = None) -> None:
        self.delays = delays or {}
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def execute(self, tool_name: str, args: dict) -> str:
        with self._lock:
            self.calls.append(tool_name)
        time.sleep(self.delays.get(tool_name, 0.0))
        if tool_name == "broken":
            raise RuntimeError("permission denied")
        return f"{tool_name}:{json.dumps(args, sort_keys=True)}"

    def tool_schemas(self) -> list[dict]:
        return []


class ParallelToolExecutorTests(unittest.TestCase):
    def _executor(self, tools, parallel: int = 4, limiter: RateLimiter | None = None, **overrides):  # noqa: ANN001
        config = EngineConfig(
            parallel_tool_calls=parallel,
            poll_interval_seconds=0.01,
            artifact_dir="unused",
            **overrides,
        )
        return ParallelToolExecutor(tools, config, limiter or RateLimiter())

    def test_results_keep_input_order(self) -> None:
        tools = CountingTools(delays={"slow": 0.15, "medium": 0.05, "fast": 0.0})
        batch = [prepared("slow", {}), prepared("medium", {}), prepared("fast", {})]
        results = self._executor(tools).execute_batch(batch, ResultCache())
        self.assertEqual([item.prepared.name for item in results], ["slow", "medium", "fast"])
        self.assertEqual(results[0].result_text, "slow:{}")
        self.assertEqual(sorted(tools.calls), ["fast", "medium", "slow"])

    def test_duplicate_calls_in_round_execute_once(self) -> None:
        tools = CountingTools()
        args = {"namespace": "default"}
        batch = [prepared("get_pods", args, "call_a"), prepared("get_pods", args, "call_b")]
        results = self._executor(tools).execute_batch(batch, ResultCache())
        self.assertEqual(tools.calls, ["get_pods"])
        self.assertEqual(results[0].result_text, results[1].result_text)
        self.assertFalse(results[0].cache_hit)
        self.assertTrue(results[1].cache_hit)
        self.assertEqual(results[1].prepared.call_id, "call_b")

    def test_cached_signature_is_not_executed(self) -> None:
        tools = CountingTools()
        cache = ResultCache()
        cache.put(tool_signature("get_pods", {}), "cached pods")
        results = self._executor(tools).execute_batch([prepared("get_pods", {})], cache)
        self.assertEqual(tools.calls, [])
        self.assertEqual(results[0].result_text, "cached pods")
        self.assertTrue(results[0].cache_hit)

    def test_successful_results_populate_cache(self) -> None:
        tools = CountingTools()
        cache = ResultCache()
        executor = self._executor(tools)
        executor.execute_batch([prepared("get_pods", {"namespace": "kube-system"})], cache)
        executor.execute_batch([prepared("get_pods", {"namespace": "kube-system"})], cache)
        self.assertEqual(tools.calls, ["get_pods"])
        self.assertEqual(len(cache), 1)

    def test_cache_disabled_executes_duplicates(self) -> None:
        tools = CountingTools()
        batch = [prepared("get_pods", {}, "a", cache=False), prepared("get_pods", {}, "b", cache=False)]
        results = self._executor(tools).execute_batch(batch, ResultCache())
        self.assertEqual(tools.calls, ["get_pods", "get_pods"])
        self.assertFalse(any(item.cache_hit for item in results))

    def test_tool_failure_becomes_result_text(self) -> None:
        tools = CountingTools()
        cache = ResultCache()
        results = self._executor(tools).execute_batch([prepared("broken", {}), prepared("ok", {})], cache)
        self.assertTrue(results[0].failed)
        self.assertEqual(results[0].result_text, "Error executing tool 'broken': permission denied")
        self.assertFalse(results[1].failed)
        self.assertNotIn(tool_signature("broken", {}), cache)

    def test_sequential_mode_throttles_each_call(self) -> None:
        waits: list[float] = []
        limiter = RateLimiter(fixed_delay_seconds=0.5, sleeper=lambda seconds, token: waits.append(seconds))
        tools = CountingTools()
        batch = [prepared("a", {}), prepared("b", {}), prepared("a", {}, "dup")]
        self._executor(tools, parallel=1, limiter=limiter).execute_batch(batch, ResultCache())
        self.assertEqual(tools.calls, ["a", "b"])
        self.assertEqual(waits, [0.5, 0.5])

    def test_parallel_mode_throttles_once_per_batch(self) -> None:
        waits: list[float] = []
        limiter = RateLimiter(fixed_delay_seconds=0.5, sleeper=lambda seconds, token: waits.append(seconds))
        batch = [prepared("a", {}), prepared("b", {}), prepared("c", {})]
        self._executor(CountingTools(), parallel=3, limiter=limiter).execute_batch(batch, ResultCache())
        self.assertEqual(waits, [0.5])

    def test_cancel_aborts_batch(self) -> None:
        tools = CountingTools(delays={"slow": 2.0})
        token = CancelToken()
        threading.Timer(0.05, token.cancel).start()
        started = time.monotonic()
        with self.assertRaises(UserCancelError):
            self._executor(tools).execute_batch(
                [prepared("slow", {"n": 1}), prepared("slow", {"n": 2})], ResultCache(), token
            )
        self.assertLess(time.monotonic() - started, 1.5)

    def test_empty_batch(self) -> None:
        self.assertEqual(self._executor(CountingTools()).execute_batch([], ResultCache()), [])


if __name__ == "__main__":
    unittest.main()
