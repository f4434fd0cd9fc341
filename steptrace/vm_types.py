"""Guest VM — data types (pure data, no business logic)."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from . import constants

# ── Values ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class HeapRef:
    """Reference to a heap container; the address is the stable node id."""

    addr: str


@dataclass(frozen=True)
class FunctionRef:
    name: str
    label: str


@dataclass(frozen=True)
class ClassRef:
    name: str
    label: str


@dataclass(frozen=True)
class GuestException:
    """An exception value built by guest code, e.g. ``ValueError("bad")``."""

    kind: str
    message: str = ""


# ── Heap ─────────────────────────────────────────────────────────


@dataclass
class HeapArray:
    type_hint: str = "list"  # list / tuple / set
    items: list[Any] = field(default_factory=list)


@dataclass
class HeapMap:
    # Keys are scalars, or tuples of scalars for tuple keys.
    entries: dict[Any, Any] = field(default_factory=dict)


@dataclass
class HeapObject:
    type_hint: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)


HeapEntry = HeapArray | HeapMap | HeapObject


# ── Frames and state ─────────────────────────────────────────────


@dataclass
class Comparison:
    operator: str
    lhs: Any
    rhs: Any
    result: bool


@dataclass
class StackFrame:
    function_name: str
    registers: dict[str, Any] = field(default_factory=dict)
    local_vars: dict[str, Any] = field(default_factory=dict)
    return_label: str | None = None
    return_ip: int | None = None  # ip to resume at in caller block
    result_reg: str | None = None  # caller's register for return value
    is_constructor: bool = False
    # comparison results by register, consumed by the branch that tests them
    comparisons: dict[str, Comparison] = field(default_factory=dict)


@dataclass
class VMState:
    language: str = "python"
    seed: int = 0
    heap: dict[str, HeapEntry] = field(default_factory=dict)
    call_stack: list[StackFrame] = field(default_factory=list)
    addr_counter: int = 0
    console: list[str] = field(default_factory=list)
    ticks: int = 0  # instructions executed; drives the guest's logical clock
    rng: random.Random = field(init=False)

    def __post_init__(self):
        self.rng = random.Random(self.seed)

    @property
    def current_frame(self) -> StackFrame:
        return self.call_stack[-1]

    @property
    def global_frame(self) -> StackFrame:
        return self.call_stack[0]

    @property
    def depth(self) -> int:
        return len(self.call_stack) - 1

    @property
    def is_javascript(self) -> bool:
        return self.language == "javascript"

    def alloc(self, entry: HeapEntry) -> HeapRef:
        if isinstance(entry, HeapArray):
            prefix = constants.ARR_ADDR_PREFIX
        elif isinstance(entry, HeapMap):
            prefix = constants.MAP_ADDR_PREFIX
        else:
            prefix = constants.OBJ_ADDR_PREFIX
        addr = f"{prefix}{self.addr_counter}"
        self.addr_counter += 1
        self.heap[addr] = entry
        return HeapRef(addr)

    def deref(self, val: Any) -> HeapEntry | None:
        if isinstance(val, HeapRef):
            return self.heap.get(val.addr)
        return None

    def lookup(self, name: str) -> tuple[bool, Any]:
        """Resolve *name* in the current frame, then module globals."""
        frame = self.current_frame
        if name in frame.local_vars:
            return True, frame.local_vars[name]
        if name in self.global_frame.local_vars:
            return True, self.global_frame.local_vars[name]
        return False, None


# ── StateUpdate schema ───────────────────────────────────────────


class StepEvent(BaseModel):
    """The observable effect of one instruction, before rendering.

    ``values`` holds raw guest values (rendered into the step detail),
    ``detail`` holds plain JSON metadata.  ``container`` is the heap
    address an indexed operation touched; ``target`` names the variable
    an assignment wrote.
    """

    operation: str
    detail: dict[str, Any] = {}
    values: dict[str, Any] = {}
    container: str | None = None
    target: str | None = None


class HeapWrite(BaseModel):
    obj_addr: str
    field: Any
    value: Any


class StackFramePush(BaseModel):
    function_name: str
    return_label: str | None = None
    is_constructor: bool = False


class StateUpdate(BaseModel):
    register_writes: dict[str, Any] = {}
    var_writes: dict[str, Any] = {}
    heap_writes: list[HeapWrite] = []
    next_label: str | None = None
    call_push: StackFramePush | None = None
    call_pop: bool = False
    return_value: Any | None = None
    event: StepEvent | None = None
    reasoning: str = ""


@dataclass(frozen=True)
class GuestFault:
    """A guest runtime error: ends the run with a ``fault`` step."""

    kind: str
    message: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}" if self.message else self.kind


# ── ExecutionResult ──────────────────────────────────────────────


@dataclass
class ExecutionResult:
    """Result of executing one instruction: a state update or a guest fault."""

    update: StateUpdate = field(default_factory=lambda: StateUpdate(reasoning=""))
    fault: GuestFault | None = None

    @property
    def failed(self) -> bool:
        return self.fault is not None

    @classmethod
    def success(cls, update: StateUpdate) -> ExecutionResult:
        return cls(update=update)

    @classmethod
    def failure(cls, kind: str, message: str) -> ExecutionResult:
        return cls(fault=GuestFault(kind=kind, message=message))
