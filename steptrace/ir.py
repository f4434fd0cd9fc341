"""Flat three-address IR shared by the frontends, the CFG builder and the machine.

Every instruction that came from guest source carries the span it was
lowered from; instructions without a span are bookkeeping the frontend
invented and are never observed.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class Opcode(str, Enum):
    # Value producers
    CONST = "CONST"
    LOAD_VAR = "LOAD_VAR"
    LOAD_FIELD = "LOAD_FIELD"
    LOAD_INDEX = "LOAD_INDEX"
    NEW_OBJECT = "NEW_OBJECT"
    NEW_ARRAY = "NEW_ARRAY"
    BINOP = "BINOP"
    UNOP = "UNOP"
    CALL_FUNCTION = "CALL_FUNCTION"
    CALL_METHOD = "CALL_METHOD"
    CALL_UNKNOWN = "CALL_UNKNOWN"
    PARAM = "PARAM"
    # Stores
    STORE_VAR = "STORE_VAR"
    STORE_FIELD = "STORE_FIELD"
    STORE_INDEX = "STORE_INDEX"
    # Block terminators
    BRANCH_IF = "BRANCH_IF"
    BRANCH = "BRANCH"
    RETURN = "RETURN"
    THROW = "THROW"
    # Loop iteration boundary
    LOOP_ITER = "LOOP_ITER"
    # A construct the frontend refused to lower; rejected before execution
    UNSUPPORTED = "UNSUPPORTED"
    LABEL = "LABEL"

    @property
    def is_terminator(self) -> bool:
        return self in _TERMINATORS


_TERMINATORS = frozenset({Opcode.BRANCH, Opcode.BRANCH_IF, Opcode.RETURN, Opcode.THROW})

COMPARISON_OPERATORS: frozenset[str] = frozenset(
    {"==", "!=", "<", ">", "<=", ">=", "===", "!==", "in", "not in", "is", "is not"}
)


class SourceLocation(BaseModel):
    """1-based lines, 0-based columns; all zeros means no source span."""

    model_config = ConfigDict(frozen=True)

    start_line: int
    start_col: int
    end_line: int
    end_col: int

    @classmethod
    def span(cls, start: tuple[int, int], end: tuple[int, int]) -> SourceLocation:
        """From tree-sitter ``(row, column)`` points."""
        return cls(start_line=start[0] + 1, start_col=start[1], end_line=end[0] + 1, end_col=end[1])

    @classmethod
    def point(cls, at: tuple[int, int]) -> SourceLocation:
        return cls.span(at, at)

    def is_unknown(self) -> bool:
        return self == NO_SOURCE_LOCATION

    def __str__(self) -> str:
        if self.is_unknown():
            return "<unknown>"
        return f"{self.start_line}:{self.start_col}-{self.end_line}:{self.end_col}"


NO_SOURCE_LOCATION = SourceLocation(start_line=0, start_col=0, end_line=0, end_col=0)


class IRInstruction(BaseModel):
    opcode: Opcode
    result_reg: str | None = None
    operands: list[Any] = []
    # LABEL name, BRANCH target, or "true,false" targets of BRANCH_IF
    label: str | None = None
    source_location: SourceLocation = NO_SOURCE_LOCATION

    @property
    def is_synthetic(self) -> bool:
        return self.source_location.is_unknown()

    @property
    def branch_targets(self) -> list[str]:
        if self.opcode not in (Opcode.BRANCH, Opcode.BRANCH_IF) or not self.label:
            return []
        return [t.strip() for t in self.label.split(",") if t.strip()]

    def __str__(self) -> str:
        if self.opcode == Opcode.LABEL:
            return f"{self.label}:"
        lhs = f"{self.result_reg} = " if self.result_reg else ""
        rhs = " ".join([self.opcode.value.lower(), *map(str, self.operands)])
        if self.label:
            rhs = f"{rhs} {self.label}"
        if self.is_synthetic:
            return lhs + rhs
        return f"{lhs}{rhs}  # {self.source_location}"
