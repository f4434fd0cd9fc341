"""End-to-end tests for execute_traced: source in, sealed trace out."""

import pytest

from steptrace.api import execute_traced
from steptrace.config import ResourceLimits
from steptrace.errors import SecurityPolicyError
from steptrace.trace_types import (
    ExecutionTrace,
    LimitKind,
    OperationKind,
    TerminationReason,
)

LINEAR_SEARCH = """\
def linear_search(arr, target):
    for i in range(len(arr)):
        if arr[i] == target:
            return i
    return -1

linear_search([3, 7, 9], 7)
"""

TWO_SUM = """\
def two_sum(nums, target):
    seen = {}
    for i in range(len(nums)):
        need = target - nums[i]
        if need in seen:
            return [seen[need], i]
        seen[nums[i]] = i
    return []
"""

FACTORIAL = """\
def fact(n):
    if n <= 1:
        return 1
    return n * fact(n - 1)
"""

TREE = """\
class Node:
    def __init__(self, value):
        self.value = value
        self.left = None
        self.right = None

root = Node(2)
root.left = Node(1)
"""


def _operations(trace: ExecutionTrace) -> list[OperationKind]:
    return [step.operation for step in trace.steps]


def _count(trace: ExecutionTrace, operation: OperationKind) -> int:
    return sum(1 for step in trace.steps if step.operation == operation)


class TestLinearSearch:
    def test_step_sequence(self):
        trace = execute_traced(LINEAR_SEARCH)

        assert _operations(trace) == [
            OperationKind.CALL_ENTRY,
            OperationKind.LOOP_ITERATION,
            OperationKind.ARRAY_READ,
            OperationKind.BRANCH,
            OperationKind.LOOP_ITERATION,
            OperationKind.ARRAY_READ,
            OperationKind.BRANCH,
            OperationKind.RETURN,
        ]

    def test_examines_two_elements_before_match(self):
        trace = execute_traced(LINEAR_SEARCH)

        reads = [s for s in trace.steps if s.operation == OperationKind.ARRAY_READ]
        assert [r.detail["value"]["value"] for r in reads] == [3, 7]
        assert all(r.detail["container"]["path"] == "arr" for r in reads)

    def test_final_step_returns_index(self):
        trace = execute_traced(LINEAR_SEARCH)

        last = trace.steps[-1]
        assert last.operation == OperationKind.RETURN
        assert last.detail["value"] == {"kind": "scalar", "value": 1}
        assert last.line == 4

    def test_summary_is_completed(self):
        trace = execute_traced(LINEAR_SEARCH)

        assert trace.summary.reason == TerminationReason.COMPLETED
        assert trace.summary.total_steps == len(trace.steps)
        assert trace.summary.fault is None

    def test_summary_carries_final_return_value(self):
        trace = execute_traced(LINEAR_SEARCH)

        assert trace.summary.return_value == {"kind": "scalar", "value": 1}
        assert trace.summary.return_value == trace.steps[-1].detail["value"]

    def test_program_that_never_returns_has_no_return_value(self):
        trace = execute_traced("x = 1\ny = x + 1\n")

        assert trace.summary.reason == TerminationReason.COMPLETED
        assert trace.summary.return_value is None

    def test_sequences_are_dense(self):
        trace = execute_traced(LINEAR_SEARCH)

        assert [s.sequence for s in trace.steps] == list(range(len(trace.steps)))

    def test_branch_carries_folded_comparison(self):
        trace = execute_traced(LINEAR_SEARCH)

        branches = [s for s in trace.steps if s.operation == OperationKind.BRANCH]
        assert [b.detail["result"] for b in branches] == [False, True]
        assert branches[1].detail["operator"] == "=="
        assert branches[1].detail["rhs"] == {"kind": "scalar", "value": 7}
        assert _count(trace, OperationKind.COMPARE) == 0


class TestEntryPoint:
    def test_two_sum_returns_pair(self):
        trace = execute_traced(TWO_SUM, entry_point="two_sum", arguments=[[2, 7, 11, 15], 9])

        assert trace.summary.reason == TerminationReason.COMPLETED
        result = trace.summary.return_value
        assert result["kind"] == "sequence"
        assert [item["value"] for item in result["value"]] == [0, 1]

    def test_two_sum_writes_map(self):
        trace = execute_traced(TWO_SUM, entry_point="two_sum", arguments=[[2, 7, 11, 15], 9])

        writes = [s for s in trace.steps if s.operation == OperationKind.MAP_WRITE]
        assert len(writes) == 1
        assert writes[0].detail["key"] == {"kind": "scalar", "value": 2}
        assert writes[0].detail["after"] == {"kind": "scalar", "value": 0}

    def test_identical_requests_yield_identical_traces(self):
        first = execute_traced(TWO_SUM, entry_point="two_sum", arguments=[[2, 7, 11, 15], 9])
        second = execute_traced(TWO_SUM, entry_point="two_sum", arguments=[[2, 7, 11, 15], 9])

        assert [s.model_dump_json() for s in first.steps] == [
            s.model_dump_json() for s in second.steps
        ]

    def test_entry_call_is_first_step(self):
        trace = execute_traced(TWO_SUM, entry_point="two_sum", arguments=[[1], 5])

        first = trace.steps[0]
        assert first.operation == OperationKind.CALL_ENTRY
        assert first.function == "two_sum"
        assert first.depth == 1
        assert first.detail["arguments"]["target"] == {"kind": "scalar", "value": 5}

    def test_recursion_reports_call_exit_below_top(self):
        trace = execute_traced(FACTORIAL, entry_point="fact", arguments=[3])

        assert _count(trace, OperationKind.CALL_ENTRY) == 3
        assert _count(trace, OperationKind.CALL_EXIT) == 2
        assert _count(trace, OperationKind.RETURN) == 1
        assert trace.steps[-1].operation == OperationKind.RETURN
        assert trace.summary.return_value == {"kind": "scalar", "value": 6}

    def test_depth_tracks_call_stack(self):
        trace = execute_traced(FACTORIAL, entry_point="fact", arguments=[3])

        entries = [s for s in trace.steps if s.operation == OperationKind.CALL_ENTRY]
        assert [e.depth for e in entries] == [1, 2, 3]

    def test_unknown_entry_point_rejected(self):
        with pytest.raises(ValueError):
            execute_traced(FACTORIAL, entry_point="missing")

    def test_inputs_are_visible_globals(self):
        trace = execute_traced("y = x * 2\n", inputs={"x": 21})

        last = trace.steps[-1]
        assert last.variables["x"] == {"kind": "scalar", "value": 21}
        assert last.variables["y"] == {"kind": "scalar", "value": 42}


class TestLimits:
    def test_default_step_ceiling_is_exact(self):
        source = "x = 0\nwhile True:\n    x = x + 1\n"
        trace = execute_traced(source, limits=ResourceLimits(time_limit_s=60.0))

        assert trace.summary.reason == TerminationReason.LIMIT_EXCEEDED
        assert trace.summary.limit == LimitKind.STEPS
        assert len(trace.steps) == 10_000
        assert trace.summary.total_steps == 10_000

    def test_custom_step_ceiling(self):
        source = "x = 0\nwhile True:\n    x = x + 1\n"
        trace = execute_traced(source, limits=ResourceLimits(max_steps=25))

        assert len(trace.steps) == 25
        assert trace.summary.limit == LimitKind.STEPS
        assert trace.summary.return_value is None

    def test_memory_ceiling(self):
        source = "xs = []\nwhile True:\n    xs.append('abcdefgh')\n"
        limits = ResourceLimits(memory_limit_bytes=4096, time_limit_s=30.0)
        trace = execute_traced(source, limits=limits)

        assert trace.summary.reason == TerminationReason.LIMIT_EXCEEDED
        assert trace.summary.limit == LimitKind.MEMORY


class TestFaults:
    def test_division_by_zero(self):
        trace = execute_traced("a = 5\nb = 0\nc = a / b\n")

        assert _operations(trace) == [
            OperationKind.ASSIGN,
            OperationKind.ASSIGN,
            OperationKind.FAULT,
        ]
        assert trace.summary.reason == TerminationReason.FAILED
        fault = trace.summary.fault
        assert fault.kind == "ZeroDivisionError"
        assert fault.line == 3
        assert fault.internal is False

    def test_index_out_of_range(self):
        trace = execute_traced("xs = [1, 2]\ny = xs[5]\n")

        assert trace.steps[-1].operation == OperationKind.FAULT
        assert trace.summary.fault.kind == "IndexError"

    def test_raise_propagates_kind(self):
        trace = execute_traced("raise ValueError('bad')\n")

        assert trace.summary.fault.kind == "ValueError"
        assert "bad" in trace.summary.fault.message

    def test_policy_violation_rejected_before_run(self):
        with pytest.raises(SecurityPolicyError):
            execute_traced("open('/etc/passwd')\n")


class TestDeepNesting:
    def test_printing_deeply_nested_list_is_elided(self):
        source = "a = []\nfor i in range(100):\n    a = [a]\nprint(a)\n"
        trace = execute_traced(source)

        assert trace.summary.reason == TerminationReason.COMPLETED
        assert trace.summary.console == ["[" * 64 + "[...]" + "]" * 64]

    def test_comparing_deeply_nested_lists_is_a_guest_fault(self):
        source = "a = []\nb = []\nfor i in range(300):\n    a = [a]\n    b = [b]\nok = a == b\n"
        trace = execute_traced(source)

        assert trace.summary.reason == TerminationReason.FAILED
        fault = trace.summary.fault
        assert fault.kind == "RecursionError"
        assert fault.internal is False
        assert fault.line == 6


class TestObjects:
    def test_constructor_returns_with_call_exit(self):
        trace = execute_traced(TREE)

        assert _count(trace, OperationKind.CALL_ENTRY) == 2
        assert _count(trace, OperationKind.CALL_EXIT) == 2
        assert _count(trace, OperationKind.RETURN) == 0

    def test_field_assignments_are_named_by_path(self):
        trace = execute_traced(TREE)

        targets = [
            s.detail["target"] for s in trace.steps if s.operation == OperationKind.ASSIGN
        ]
        assert "self.value" in targets
        assert targets[-1] == "root.left"

    def test_tree_nodes_live_in_arena(self):
        trace = execute_traced(TREE)

        last = trace.steps[-1]
        root = last.variables["root"]
        assert root["kind"] == "tree_node"
        record = last.nodes[root["value"]["ref"]]
        assert record["type"] == "Node"
        left = record["fields"]["left"]
        assert left["kind"] == "tree_node"
        assert last.nodes[left["value"]["ref"]]["fields"]["value"] == {
            "kind": "scalar",
            "value": 1,
        }


class TestConsole:
    def test_print_lines_land_in_summary(self):
        trace = execute_traced("print('hi')\nprint(1, 2)\n")

        assert trace.summary.console == ["hi", "1 2"]


class TestJavaScript:
    def test_linear_search(self):
        source = """\
function find(arr, target) {
  for (let i = 0; i < arr.length; i++) {
    if (arr[i] === target) {
      return i;
    }
  }
  return -1;
}
find([3, 7, 9], 9);
"""
        trace = execute_traced(source, "javascript")

        assert trace.summary.reason == TerminationReason.COMPLETED
        assert _count(trace, OperationKind.ARRAY_READ) == 3
        assert trace.steps[-1].operation == OperationKind.RETURN
        assert trace.steps[-1].detail["value"] == {"kind": "scalar", "value": 2}

    def test_console_log(self):
        trace = execute_traced("console.log('a', 1);\n", "javascript")

        assert trace.summary.console == ["a 1"]
