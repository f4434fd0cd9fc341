"""Resource Governor — pure admission check run before every committed step."""

from __future__ import annotations

from dataclasses import dataclass

from .config import ResourceLimits
from .trace_types import LimitKind
from .vm_types import HeapArray, HeapMap, VMState

# Deterministic per-value cost model, in bytes.
_SLOT_BYTES = 8
_CONTAINER_BYTES = 64
_FRAME_BYTES = 256
_REGISTER_BYTES = 16


@dataclass
class ResourceUsage:
    """Live counters for one execution."""

    elapsed_s: float = 0.0
    steps_emitted: int = 0
    memory_bytes: int = 0
    peak_memory_bytes: int = 0

    def observe_memory(self, memory_bytes: int):
        self.memory_bytes = memory_bytes
        self.peak_memory_bytes = max(self.peak_memory_bytes, memory_bytes)


@dataclass(frozen=True)
class Continue:
    pass


@dataclass(frozen=True)
class Deny:
    limit: LimitKind

    @property
    def reason(self) -> str:
        return f"{self.limit.value} limit exceeded"


Decision = Continue | Deny

CONTINUE = Continue()


def authorize(
    usage: ResourceUsage, limits: ResourceLimits, *, committing: bool = True
) -> Decision:
    """Decide whether execution may go on.

    With *committing* set the caller is about to commit one more step, so
    the step ceiling counts that step.  Between steps (``committing=False``)
    only time and memory are checked.
    """
    if usage.elapsed_s > limits.time_limit_s:
        return Deny(LimitKind.TIME)
    if usage.memory_bytes > limits.memory_limit_bytes:
        return Deny(LimitKind.MEMORY)
    if committing and usage.steps_emitted >= limits.max_steps:
        return Deny(LimitKind.STEPS)
    return CONTINUE


def _value_bytes(val) -> int:
    if isinstance(val, str):
        return _SLOT_BYTES + len(val)
    if isinstance(val, int) and not isinstance(val, bool):
        return _SLOT_BYTES + val.bit_length() // 8
    return _SLOT_BYTES


def estimate_memory(vm: VMState) -> int:
    """Approximate guest memory from the heap and call stack.

    Depends only on guest state, never on host object sizes, so two runs of
    the same program agree on when the memory ceiling is hit.
    """
    total = 0
    for entry in vm.heap.values():
        total += _CONTAINER_BYTES
        if isinstance(entry, HeapArray):
            total += sum(_value_bytes(v) for v in entry.items)
        elif isinstance(entry, HeapMap):
            total += sum(_value_bytes(k) + _value_bytes(v) for k, v in entry.entries.items())
        else:
            total += sum(_value_bytes(k) + _value_bytes(v) for k, v in entry.fields.items())
    for frame in vm.call_stack:
        total += _FRAME_BYTES + _REGISTER_BYTES * len(frame.registers)
        total += sum(_value_bytes(v) for v in frame.local_vars.values())
    total += sum(_value_bytes(line) for line in vm.console)
    return total
