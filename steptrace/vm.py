"""Guest VM — state update application, operators, and value helpers."""

from __future__ import annotations

import ast
import math
from typing import Any

from .registry import parse_class_ref, parse_func_ref
from .vm_types import (
    ClassRef,
    FunctionRef,
    GuestException,
    HeapArray,
    HeapMap,
    HeapObject,
    HeapRef,
    StackFrame,
    StateUpdate,
    VMState,
)
from . import constants

# Host-side guards on single operations; the governor bounds the rest.
MAX_CONTAINER_ITEMS = 1_000_000
MAX_STRING_LENGTH = 10_000_000
MAX_INT_BITS = 100_000
# Nesting depth at which structural comparison gives up with a RecursionError.
MAX_COMPARE_DEPTH = 200


class GuestRuntimeError(Exception):
    """Raised inside the VM for a guest runtime fault.

    Never escapes the executor: it is turned into a ``GuestFault`` result.
    """

    def __init__(self, kind: str, message: str = ""):
        super().__init__(f"{kind}: {message}")
        self.kind = kind
        self.message = message


def apply_update(vm: VMState, update: StateUpdate):
    """Mechanically apply a StateUpdate to the VM."""
    frame = vm.current_frame

    # Register writes: always to the CURRENT (caller's) frame
    for reg, val in update.register_writes.items():
        frame.registers[reg] = val

    # Heap writes
    for hw in update.heap_writes:
        entry = vm.heap[hw.obj_addr]
        if isinstance(entry, HeapArray):
            index = hw.field
            if index >= len(entry.items):
                # JavaScript arrays grow on out-of-range writes
                entry.items.extend([None] * (index - len(entry.items) + 1))
            entry.items[index] = hw.value
        elif isinstance(entry, HeapMap):
            entry.entries[hw.field] = hw.value
        else:
            entry.fields[hw.field] = hw.value

    # Call push before var_writes so parameter bindings land in the
    # new frame when dispatching a function call
    if update.call_push:
        vm.call_stack.append(
            StackFrame(
                function_name=update.call_push.function_name,
                return_label=update.call_push.return_label,
                is_constructor=update.call_push.is_constructor,
            )
        )

    target_frame = vm.current_frame
    for var, val in update.var_writes.items():
        target_frame.local_vars[var] = val

    # Call pop
    if update.call_pop and len(vm.call_stack) > 1:
        vm.call_stack.pop()


# ── Helpers ──────────────────────────────────────────────────────


def resolve_reg(vm: VMState, operand: Any) -> Any:
    """Resolve a register name to its value, or return the operand as-is."""
    if isinstance(operand, str) and operand.startswith("%"):
        return vm.current_frame.registers.get(operand)
    return operand


def normalize_number(vm: VMState, val: Any) -> Any:
    """JavaScript has one number type: integral floats behave as integers."""
    if (
        vm.is_javascript
        and isinstance(val, float)
        and math.isfinite(val)
        and val.is_integer()
    ):
        return int(val)
    return val


_LITERAL_WORDS: dict[str, Any] = {
    "None": None,
    "True": True,
    "False": False,
    "null": None,
    "undefined": None,
    "true": True,
    "false": False,
}


def parse_const(raw: Any, vm: VMState) -> Any:
    """Parse a constant literal string into a guest value."""
    if not isinstance(raw, str):
        return raw
    if raw in _LITERAL_WORDS:
        return _LITERAL_WORDS[raw]
    fr = parse_func_ref(raw)
    if fr.matched:
        return FunctionRef(name=fr.name, label=fr.label)
    cr = parse_class_ref(raw)
    if cr.matched:
        return ClassRef(name=cr.name, label=cr.label)
    for convert in (int, lambda r: int(r, 0), float):
        try:
            return normalize_number(vm, convert(raw))
        except ValueError:
            pass
    if raw and raw[-1] in ("'", '"'):
        try:
            val = ast.literal_eval(raw)
        except (ValueError, SyntaxError):
            return raw[1:-1]
        return val.decode("utf-8", errors="replace") if isinstance(val, bytes) else val
    return raw


def type_name(vm: VMState, val: Any) -> str:
    if val is None:
        return "undefined" if vm.is_javascript else "NoneType"
    if isinstance(val, bool):
        return "bool"
    if isinstance(val, int):
        return "int"
    if isinstance(val, float):
        return "float"
    if isinstance(val, str):
        return "str"
    if isinstance(val, (FunctionRef, ClassRef)):
        return "function"
    if isinstance(val, GuestException):
        return val.kind
    if isinstance(val, tuple):
        return "tuple"
    entry = vm.deref(val)
    if isinstance(entry, HeapArray):
        return entry.type_hint
    if isinstance(entry, HeapMap):
        return "dict"
    if isinstance(entry, HeapObject):
        return entry.type_hint or "object"
    return type(val).__name__


def truthy(vm: VMState, val: Any) -> bool:
    entry = vm.deref(val)
    if entry is None:
        if isinstance(val, float) and math.isnan(val):
            return False
        return bool(val)
    if vm.is_javascript:
        return True
    if isinstance(entry, HeapArray):
        return bool(entry.items)
    if isinstance(entry, HeapMap):
        return bool(entry.entries)
    return True


def _check_depth(depth: int):
    if depth > MAX_COMPARE_DEPTH:
        raise GuestRuntimeError("RecursionError", "maximum recursion depth exceeded in comparison")


def values_equal(vm: VMState, a: Any, b: Any, _depth: int = 0) -> bool:
    """Structural equality for sequences and maps, identity for objects."""
    if isinstance(a, HeapRef) and isinstance(b, HeapRef):
        if a.addr == b.addr:
            return True
        _check_depth(_depth)
        ea, eb = vm.heap[a.addr], vm.heap[b.addr]
        if isinstance(ea, HeapArray) and isinstance(eb, HeapArray):
            if vm.is_javascript or ea.type_hint != eb.type_hint and "set" in (ea.type_hint, eb.type_hint):
                return False
            return len(ea.items) == len(eb.items) and all(
                values_equal(vm, x, y, _depth + 1) for x, y in zip(ea.items, eb.items)
            )
        if isinstance(ea, HeapMap) and isinstance(eb, HeapMap) and not vm.is_javascript:
            return ea.entries.keys() == eb.entries.keys() and all(
                values_equal(vm, v, eb.entries[k], _depth + 1) for k, v in ea.entries.items()
            )
        return False
    if isinstance(a, HeapRef) or isinstance(b, HeapRef):
        return False
    return a == b


def to_key(vm: VMState, val: Any) -> Any:
    """Convert a guest value into a map key."""
    if isinstance(val, HeapRef):
        entry = vm.heap[val.addr]
        if isinstance(entry, HeapArray) and entry.type_hint == "tuple":
            return tuple(to_key(vm, item) for item in entry.items)
        raise GuestRuntimeError("TypeError", f"unhashable type: '{type_name(vm, val)}'")
    if vm.is_javascript and not isinstance(val, str):
        # JavaScript object keys are strings
        return display(vm, val)
    return val


def from_key(vm: VMState, key: Any) -> Any:
    """Inverse of ``to_key``: tuple keys come back as fresh tuples."""
    if isinstance(key, tuple):
        return vm.alloc(HeapArray(type_hint="tuple", items=[from_key(vm, k) for k in key]))
    return key


def sort_key(vm: VMState, val: Any, _depth: int = 0) -> Any:
    """An orderable host value for guest comparisons and sorting."""
    entry = vm.deref(val)
    if isinstance(entry, HeapArray):
        _check_depth(_depth)
        return tuple(sort_key(vm, item, _depth + 1) for item in entry.items)
    if entry is not None:
        raise GuestRuntimeError(
            "TypeError", f"'{type_name(vm, val)}' values are not orderable"
        )
    if isinstance(val, tuple):
        return tuple(sort_key(vm, item, _depth + 1) for item in val)
    return val


def iter_items(vm: VMState, val: Any) -> list[Any]:
    """The elements a guest loop over *val* visits."""
    if isinstance(val, str):
        return list(val)
    entry = vm.deref(val)
    if isinstance(entry, HeapArray):
        return list(entry.items)
    if isinstance(entry, HeapMap):
        return [from_key(vm, k) for k in entry.entries]
    raise GuestRuntimeError("TypeError", f"'{type_name(vm, val)}' object is not iterable")


def check_size(val: Any) -> Any:
    if isinstance(val, str) and len(val) > MAX_STRING_LENGTH:
        raise GuestRuntimeError("MemoryError", "string too large")
    if isinstance(val, int) and not isinstance(val, bool) and val.bit_length() > MAX_INT_BITS:
        raise GuestRuntimeError("OverflowError", "integer too large")
    return val


def new_array(vm: VMState, items: list[Any], type_hint: str = "list") -> HeapRef:
    if len(items) > MAX_CONTAINER_ITEMS:
        raise GuestRuntimeError("MemoryError", "sequence too large")
    if type_hint == "set":
        unique: list[Any] = []
        for item in items:
            if not any(values_equal(vm, item, u) for u in unique):
                unique.append(item)
        items = unique
    return vm.alloc(HeapArray(type_hint=type_hint, items=items))


# ── Display ──────────────────────────────────────────────────────


def _format_float(vm: VMState, val: float) -> str:
    if math.isnan(val):
        return "NaN" if vm.is_javascript else "nan"
    if math.isinf(val):
        if vm.is_javascript:
            return "Infinity" if val > 0 else "-Infinity"
        return "inf" if val > 0 else "-inf"
    if vm.is_javascript and val.is_integer():
        return str(int(val))
    return repr(val)


def display(vm: VMState, val: Any, nested: bool = False, _seen: frozenset = frozenset()) -> str:
    """Format a guest value the way the guest language prints it."""
    js = vm.is_javascript
    if val is None:
        return "undefined" if js else "None"
    if isinstance(val, bool):
        return ("true" if val else "false") if js else str(val)
    if isinstance(val, float):
        return _format_float(vm, val)
    if isinstance(val, str):
        if not nested:
            return val
        return f"'{val}'" if js else repr(val)
    if isinstance(val, (FunctionRef, ClassRef)):
        kind = "class" if isinstance(val, ClassRef) else "function"
        return f"[{kind} {val.name}]" if js else f"<{kind} {val.name}>"
    if isinstance(val, GuestException):
        return f"{val.kind}: {val.message}" if js else val.message
    if isinstance(val, tuple):
        return "(" + ", ".join(display(vm, v, True, _seen) for v in val) + ")"
    entry = vm.deref(val)
    if isinstance(entry, (HeapArray, HeapMap)):
        if val.addr in _seen:
            return "[Circular]" if js else ("{...}" if isinstance(entry, HeapMap) else "[...]")
        if len(_seen) >= constants.MAX_NESTING:
            if js:
                return "[Object]" if isinstance(entry, HeapMap) else "[Array]"
            return "{...}" if isinstance(entry, HeapMap) else "[...]"
        _seen = _seen | {val.addr}
    if isinstance(entry, HeapArray):
        inner = ", ".join(display(vm, v, True, _seen) for v in entry.items)
        if js:
            return f"[ {inner} ]" if inner else "[]"
        if entry.type_hint == "tuple":
            return f"({inner},)" if len(entry.items) == 1 else f"({inner})"
        if entry.type_hint == "set":
            return f"{{{inner}}}" if inner else "set()"
        return f"[{inner}]"
    if isinstance(entry, HeapMap):
        if js:
            inner = ", ".join(f"{k}: {display(vm, v, True, _seen)}" for k, v in entry.entries.items())
            return f"{{ {inner} }}" if inner else "{}"
        inner = ", ".join(
            f"{display(vm, from_key(vm, k), True, _seen)}: {display(vm, v, True, _seen)}"
            for k, v in entry.entries.items()
        )
        return f"{{{inner}}}"
    if isinstance(entry, HeapObject):
        return f"{entry.type_hint} {{}}" if js else f"<{entry.type_hint} object>"
    return str(val)


# ── Operators ────────────────────────────────────────────────────


class Operators:
    """Binary and unary operator evaluation over guest values.

    Failures raise ``GuestRuntimeError`` with the guest-visible error kind.
    """

    ARITHMETIC: dict[str, Any] = {
        "+": lambda a, b: a + b,
        "-": lambda a, b: a - b,
        "*": lambda a, b: a * b,
        "/": lambda a, b: a / b,
        "//": lambda a, b: a // b,
        "%": lambda a, b: a % b,
        "**": lambda a, b: a**b,
        "&": lambda a, b: a & b,
        "|": lambda a, b: a | b,
        "^": lambda a, b: a ^ b,
        "<<": lambda a, b: a << b,
        ">>": lambda a, b: a >> b,
    }

    ORDERING: dict[str, Any] = {
        "<": lambda a, b: a < b,
        ">": lambda a, b: a > b,
        "<=": lambda a, b: a <= b,
        ">=": lambda a, b: a >= b,
    }

    @classmethod
    def eval_binop(cls, vm: VMState, op: str, lhs: Any, rhs: Any) -> Any:
        if op in ("==", "!="):
            eq = values_equal(vm, lhs, rhs)
            return eq if op == "==" else not eq
        if op in ("is", "is not"):
            same = (
                lhs.addr == rhs.addr
                if isinstance(lhs, HeapRef) and isinstance(rhs, HeapRef)
                else not isinstance(lhs, HeapRef) and not isinstance(rhs, HeapRef) and lhs == rhs
            )
            return same if op == "is" else not same
        if op in ("in", "not in"):
            found = cls._contains(vm, rhs, lhs)
            return found if op == "in" else not found
        if op in cls.ORDERING:
            return cls._compare(vm, op, lhs, rhs)
        if op not in cls.ARITHMETIC:
            raise GuestRuntimeError("SyntaxError", f"unsupported operator {op!r}")
        if isinstance(lhs, HeapRef) or isinstance(rhs, HeapRef):
            return cls._container_binop(vm, op, lhs, rhs)
        if vm.is_javascript:
            return normalize_number(vm, cls._js_arith(vm, op, lhs, rhs))
        return cls._arith(vm, op, lhs, rhs)

    @classmethod
    def _arith(cls, vm: VMState, op: str, lhs: Any, rhs: Any) -> Any:
        if op in ("/", "//", "%") and _is_number(rhs) and rhs == 0 and _is_number(lhs):
            raise GuestRuntimeError("ZeroDivisionError", "division by zero")
        if op == "**" and isinstance(rhs, int) and abs(rhs) > MAX_INT_BITS and _is_number(lhs) and abs(lhs) > 1:
            raise GuestRuntimeError("OverflowError", "exponent too large")
        if op in ("*",) and (isinstance(lhs, str) or isinstance(rhs, str)):
            count = rhs if isinstance(lhs, str) else lhs
            text = lhs if isinstance(lhs, str) else rhs
            if isinstance(count, int) and count * len(text) > MAX_STRING_LENGTH:
                raise GuestRuntimeError("MemoryError", "string too large")
        try:
            return check_size(cls.ARITHMETIC[op](lhs, rhs))
        except (TypeError, ValueError):
            raise GuestRuntimeError(
                "TypeError",
                f"unsupported operand type(s) for {op}: "
                f"'{type_name(vm, lhs)}' and '{type_name(vm, rhs)}'",
            ) from None
        except OverflowError as exc:
            raise GuestRuntimeError("OverflowError", str(exc)) from None

    @classmethod
    def _js_arith(cls, vm: VMState, op: str, lhs: Any, rhs: Any) -> Any:
        if op == "+" and (isinstance(lhs, str) or isinstance(rhs, str)):
            return check_size(display(vm, lhs) + display(vm, rhs))
        if not (_is_number(lhs) and _is_number(rhs)):
            if lhs is None or rhs is None:
                return float("nan")
            raise GuestRuntimeError(
                "TypeError",
                f"unsupported operand type(s) for {op}: "
                f"'{type_name(vm, lhs)}' and '{type_name(vm, rhs)}'",
            )
        if op == "/":
            if rhs == 0:
                if lhs == 0:
                    return float("nan")
                return math.copysign(float("inf"), lhs) * math.copysign(1, rhs)
            return lhs / rhs
        if op == "%":
            if rhs == 0:
                return float("nan")
            return math.fmod(lhs, rhs) if isinstance(lhs, float) or isinstance(rhs, float) else int(math.copysign(abs(lhs) % abs(rhs), lhs))
        if op == "//":
            raise GuestRuntimeError("SyntaxError", "unsupported operator '//'")
        return cls._arith(vm, op, lhs, rhs)

    @classmethod
    def _container_binop(cls, vm: VMState, op: str, lhs: Any, rhs: Any) -> Any:
        le, re_ = vm.deref(lhs), vm.deref(rhs)
        if op == "+" and isinstance(le, HeapArray) and isinstance(re_, HeapArray):
            if vm.is_javascript:
                return display(vm, lhs) + display(vm, rhs)
            if le.type_hint == re_.type_hint and le.type_hint != "set":
                return new_array(vm, le.items + re_.items, le.type_hint)
        if op == "*" and not vm.is_javascript:
            arr, count = (le, rhs) if isinstance(le, HeapArray) else (re_, lhs)
            if isinstance(arr, HeapArray) and isinstance(count, int) and arr.type_hint != "set":
                if count * len(arr.items) > MAX_CONTAINER_ITEMS:
                    raise GuestRuntimeError("MemoryError", "sequence too large")
                return new_array(vm, arr.items * max(count, 0), arr.type_hint)
        if vm.is_javascript and op == "+":
            return display(vm, lhs) + display(vm, rhs)
        raise GuestRuntimeError(
            "TypeError",
            f"unsupported operand type(s) for {op}: "
            f"'{type_name(vm, lhs)}' and '{type_name(vm, rhs)}'",
        )

    @classmethod
    def _compare(cls, vm: VMState, op: str, lhs: Any, rhs: Any) -> bool:
        try:
            return cls.ORDERING[op](sort_key(vm, lhs), sort_key(vm, rhs))
        except TypeError:
            if vm.is_javascript:
                return False
            raise GuestRuntimeError(
                "TypeError",
                f"'{op}' not supported between instances of "
                f"'{type_name(vm, lhs)}' and '{type_name(vm, rhs)}'",
            ) from None

    @classmethod
    def _contains(cls, vm: VMState, container: Any, item: Any) -> bool:
        if isinstance(container, str):
            if not isinstance(item, str):
                raise GuestRuntimeError(
                    "TypeError", "'in <string>' requires string as left operand"
                )
            return item in container
        entry = vm.deref(container)
        if isinstance(entry, HeapArray):
            if vm.is_javascript:
                # JS `in` tests indices of arrays
                return isinstance(item, int) and 0 <= item < len(entry.items)
            return any(values_equal(vm, item, x) for x in entry.items)
        if isinstance(entry, HeapMap):
            return to_key(vm, item) in entry.entries
        raise GuestRuntimeError(
            "TypeError", f"argument of type '{type_name(vm, container)}' is not iterable"
        )

    @classmethod
    def eval_unop(cls, vm: VMState, op: str, operand: Any) -> Any:
        if op in ("not", "!"):
            return not truthy(vm, operand)
        if op == "typeof":
            return _js_typeof(vm, operand)
        if op in ("-", "+", "~") and _is_number(operand):
            if op == "-":
                return -operand
            if op == "+":
                return operand
            if isinstance(operand, int):
                return ~operand
        if op == "+" and vm.is_javascript and isinstance(operand, str):
            try:
                return normalize_number(vm, float(operand))
            except ValueError:
                return float("nan")
        raise GuestRuntimeError(
            "TypeError", f"bad operand type for unary {op}: '{type_name(vm, operand)}'"
        )


def _is_number(val: Any) -> bool:
    return isinstance(val, (int, float))


def _js_typeof(vm: VMState, val: Any) -> str:
    if val is None:
        return "undefined"
    if isinstance(val, bool):
        return "boolean"
    if _is_number(val):
        return "number"
    if isinstance(val, str):
        return "string"
    if isinstance(val, (FunctionRef, ClassRef)):
        return "function"
    return "object"


# ── Declared input conversion ────────────────────────────────────


def to_guest(vm: VMState, value: Any) -> Any:
    """Convert a JSON value into a guest value (lists → sequences, objects → maps)."""
    if isinstance(value, list):
        return new_array(vm, [to_guest(vm, v) for v in value])
    if isinstance(value, dict):
        entries = {to_key(vm, k): to_guest(vm, v) for k, v in value.items()}
        return vm.alloc(HeapMap(entries=entries))
    if isinstance(value, float):
        return normalize_number(vm, value)
    return value


def is_internal_name(name: str) -> bool:
    return name.startswith(constants.INTERNAL_NAME_PREFIX)
