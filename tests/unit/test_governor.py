"""Tests for the resource governor's admission check and memory model."""

import pytest

from steptrace.config import ResourceLimits
from steptrace.errors import InvalidConfigError
from steptrace.governor import CONTINUE, Deny, ResourceUsage, authorize, estimate_memory
from steptrace.trace_types import LimitKind
from steptrace.vm_types import HeapArray, HeapMap, StackFrame, VMState


def _limits(**kwargs) -> ResourceLimits:
    return ResourceLimits(**{"time_limit_s": 5.0, "memory_limit_bytes": 1000, "max_steps": 10, **kwargs})


def _vm() -> VMState:
    vm = VMState()
    vm.call_stack.append(StackFrame(function_name="<main>"))
    return vm


class TestAuthorize:
    def test_within_limits_continues(self):
        usage = ResourceUsage(elapsed_s=1.0, steps_emitted=3, memory_bytes=100)

        assert authorize(usage, _limits()) == CONTINUE

    def test_step_ceiling_denies_the_step_past_it(self):
        assert authorize(ResourceUsage(steps_emitted=9), _limits()) == CONTINUE
        assert authorize(ResourceUsage(steps_emitted=10), _limits()) == Deny(LimitKind.STEPS)

    def test_step_ceiling_ignored_between_steps(self):
        usage = ResourceUsage(steps_emitted=10)

        assert authorize(usage, _limits(), committing=False) == CONTINUE

    def test_time_ceiling(self):
        decision = authorize(ResourceUsage(elapsed_s=5.01), _limits())

        assert decision == Deny(LimitKind.TIME)
        assert decision.reason == "time limit exceeded"

    def test_memory_ceiling(self):
        usage = ResourceUsage(memory_bytes=1001)

        assert authorize(usage, _limits(), committing=False) == Deny(LimitKind.MEMORY)

    def test_time_checked_before_memory_and_steps(self):
        usage = ResourceUsage(elapsed_s=10.0, memory_bytes=10_000, steps_emitted=50)

        assert authorize(usage, _limits()).limit == LimitKind.TIME

    def test_memory_checked_before_steps(self):
        usage = ResourceUsage(memory_bytes=10_000, steps_emitted=50)

        assert authorize(usage, _limits()).limit == LimitKind.MEMORY


class TestResourceUsage:
    def test_peak_memory_is_retained(self):
        usage = ResourceUsage()
        usage.observe_memory(500)
        usage.observe_memory(200)

        assert usage.memory_bytes == 200
        assert usage.peak_memory_bytes == 500


class TestEstimateMemory:
    def test_grows_with_heap(self):
        vm = _vm()
        base = estimate_memory(vm)
        vm.alloc(HeapArray(type_hint="list", items=[1, 2, 3]))

        assert estimate_memory(vm) > base

    def test_strings_cost_their_length(self):
        short, long = _vm(), _vm()
        short.alloc(HeapArray(type_hint="list", items=["a"]))
        long.alloc(HeapArray(type_hint="list", items=["a" * 100]))

        assert estimate_memory(long) - estimate_memory(short) == 99

    def test_is_deterministic(self):
        def build():
            vm = _vm()
            ref = vm.alloc(HeapMap())
            vm.heap[ref.addr].entries["k"] = "v"
            vm.console.append("hello")
            return vm

        assert estimate_memory(build()) == estimate_memory(build())


class TestResourceLimits:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"time_limit_s": 0},
            {"time_limit_s": float("inf")},
            {"memory_limit_bytes": 0},
            {"max_steps": -1},
        ],
    )
    def test_invalid_limits_rejected(self, kwargs):
        with pytest.raises(InvalidConfigError):
            ResourceLimits(**kwargs)

    def test_defaults(self):
        limits = ResourceLimits()

        assert limits.time_limit_s == 5.0
        assert limits.memory_limit_bytes == 128 * 1024 * 1024
        assert limits.max_steps == 10_000
