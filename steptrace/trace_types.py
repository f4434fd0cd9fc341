"""Trace data types for step-by-step execution replay."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class OperationKind(str, Enum):
    """What a single Step observed."""

    ASSIGN = "assign"
    ARRAY_READ = "array_read"
    ARRAY_WRITE = "array_write"
    MAP_READ = "map_read"
    MAP_WRITE = "map_write"
    COMPARE = "compare"
    BRANCH = "branch"
    LOOP_ITERATION = "loop_iteration"
    CALL_ENTRY = "call_entry"
    CALL_EXIT = "call_exit"
    RETURN = "return"
    FAULT = "fault"


class ValueKind(str, Enum):
    SCALAR = "scalar"
    SEQUENCE = "sequence"
    MAP = "map"
    TREE_NODE = "tree_node"
    GRAPH_NODE = "graph_node"


class TerminationReason(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    LIMIT_EXCEEDED = "limit_exceeded"
    CANCELLED = "cancelled"


class LimitKind(str, Enum):
    TIME = "time"
    STEPS = "steps"
    MEMORY = "memory"


class SessionState(str, Enum):
    """Lifecycle of a session: PENDING → RUNNING → one terminal state."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    LIMIT_EXCEEDED = "limit_exceeded"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (SessionState.PENDING, SessionState.RUNNING)

    @classmethod
    def from_reason(cls, reason: TerminationReason) -> SessionState:
        return cls(reason.value)


class StepDelta(BaseModel):
    """Variables that changed or disappeared since the previous Step."""

    model_config = ConfigDict(frozen=True)

    changed: dict[str, Any] = {}
    removed: list[str] = []
    # node arena records that are new or changed
    nodes: dict[str, Any] = {}


class Step(BaseModel):
    """One committed record of a single primitive operation's effect.

    ``variables`` maps each visible name to a tagged value
    ``{"kind": ValueKind, "value": ...}``; tree and graph nodes are
    referenced by id and listed once in ``nodes``.
    """

    model_config = ConfigDict(frozen=True)

    sequence: int
    line: int
    column: int = 0
    operation: OperationKind
    function: str
    depth: int
    variables: dict[str, Any] = {}
    nodes: dict[str, Any] = {}
    detail: dict[str, Any] = {}
    delta: StepDelta | None = None


class FaultInfo(BaseModel):
    """Why a trace ended in FAILED; ``internal`` marks engine faults."""

    model_config = ConfigDict(frozen=True)

    kind: str
    message: str
    line: int = 0
    column: int = 0
    internal: bool = False


class TraceSummary(BaseModel):
    """Terminal metadata of a sealed trace."""

    model_config = ConfigDict(frozen=True)

    reason: TerminationReason
    return_value: dict[str, Any] | None = None
    total_steps: int = 0
    elapsed_ms: int = 0
    console: list[str] = []
    fault: FaultInfo | None = None
    limit: LimitKind | None = None


class ExecutionTrace(BaseModel):
    """A sealed trace read back in full: every Step plus the summary."""

    model_config = ConfigDict(frozen=True)

    steps: list[Step] = []
    summary: TraceSummary
