import json
import unittest

from agentic_diagnostics.config import EngineConfig
from agentic_diagnostics.orchestration.langgraph.budget import LoopBudgetTracker
from agentic_diagnostics.orchestration.langgraph.call_preparation import (
    collapse_duplicates,
    ensure_call_ids,
    parse_arguments,
    prepare_calls,
    tool_signature,
)
from agentic_diagnostics.schemas import ToolInvocationRequest


def call(name: str, args: dict | str, call_id: str = "") -> ToolInvocationRequest:
    raw = args if isinstance(args, str) else json.dumps(args)
    return ToolInvocationRequest(id=call_id, name=name, raw_arguments=raw)


class ArgumentParsingTests(unittest.TestCase):
    def test_json_object(self) -> None:
        self.assertEqual(parse_arguments("kubectl", '{"command": "kubectl get pods"}'), {"command": "kubectl get pods"})

    def test_blank_arguments(self) -> None:
        self.assertEqual(parse_arguments("kubectl", "  "), {})

    def test_malformed_and_non_object_kept_raw(self) -> None:
        self.assertEqual(parse_arguments("kubectl", "{not json"), {"raw": "{not json"})
        self.assertEqual(parse_arguments("kubectl", "[1, 2]"), {"raw": "[1, 2]"})

    def test_signature_ignores_key_order(self) -> None:
        first = tool_signature("get_pods", {"namespace": "default", "label": "app=web"})
        second = tool_signature("get_pods", {"label": "app=web", "namespace": "default"})
        self.assertEqual(first, second)
        self.assertTrue(first.startswith("get_pods|"))
        self.assertEqual(tool_signature("  ", {"a": 1}), "")


class CallIdTests(unittest.TestCase):
    def test_missing_ids_are_unique_within_batch(self) -> None:
        calls = [call("kubectl", {}), call("kubectl", {"a": 1}), call("echo", {}, "call_9")]
        result = ensure_call_ids(calls, clock_ns=lambda: 100)
        self.assertEqual([item.id for item in result], ["tool_kubectl_100", "tool_kubectl_101", "call_9"])
        # Inputs are not mutated.
        self.assertEqual(calls[0].id, "")


class PrepareCallsTests(unittest.TestCase):
    def _tracker(self, **overrides) -> LoopBudgetTracker:
        return LoopBudgetTracker(EngineConfig(artifact_dir="unused", **overrides))

    def test_prepares_every_call_within_budget(self) -> None:
        tracker = self._tracker()
        result = prepare_calls([call("a", {"x": 1}, "1"), call("b", {}, "2")], tracker, 3, True)
        self.assertEqual([item.name for item in result.prepared], ["a", "b"])
        self.assertEqual(result.prepared[0].args, {"x": 1})
        self.assertEqual(result.prepared[0].round_index, 3)
        self.assertTrue(result.prepared[0].cache_eligible)
        self.assertEqual(result.skipped, [])
        self.assertEqual(tracker.stop_reason, "")

    def test_repeat_limit_rejects_second_identical_call(self) -> None:
        tracker = self._tracker(tool_repeat_limit=1)
        calls = [call("get_pods", {"namespace": "default"}, "1"), call("get_pods", {"namespace": "default"}, "2")]
        result = prepare_calls(calls, tracker, 1, True)
        self.assertEqual(len(result.prepared), 1)
        self.assertEqual([item.id for item in result.skipped], ["2"])
        self.assertIn("repeat limit", tracker.stop_reason)

    def test_result_byte_budget_blocks_admission(self) -> None:
        tracker = self._tracker(tool_result_budget_bytes=50)
        tracker.state.total_result_bytes = 60
        result = prepare_calls([call("a", {}, "1")], tracker, 2, True)
        self.assertEqual(result.prepared, [])
        self.assertEqual(len(result.skipped), 1)
        self.assertEqual(tracker.stop_reason, "tool-result budget exhausted (50 bytes)")

    def test_total_budget_counts_pending_calls(self) -> None:
        tracker = self._tracker(max_tool_calls_total=3)
        tracker.state.total_tool_calls = 1
        calls = [call("a", {}, "1"), call("b", {}, "2"), call("c", {}, "3")]
        result = prepare_calls(calls, tracker, 2, True)
        self.assertEqual(len(result.prepared), 2)
        self.assertEqual(tracker.stop_reason, "total tool-call budget exhausted (3)")

    def test_collapse_duplicates(self) -> None:
        tracker = self._tracker()
        calls = [call("a", {"n": 1}, "1"), call("b", {}, "2"), call("a", {"n": 1}, "3")]
        result = prepare_calls(calls, tracker, 1, True)
        unique, duplicate_of = collapse_duplicates(result.prepared)
        self.assertEqual(unique, [0, 1])
        self.assertEqual(duplicate_of, {2: 0})

        uncached = prepare_calls(calls, self._tracker(), 1, False)
        unique, duplicate_of = collapse_duplicates(uncached.prepared)
        self.assertEqual(unique, [0, 1, 2])
        self.assertEqual(duplicate_of, {})


if __name__ == "__main__":
    unittest.main()
