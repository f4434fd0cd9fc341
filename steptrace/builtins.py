"""Built-in function and method implementations for the guest VM.

Functions take ``(args, vm)`` and return a guest value.  Methods take
``(vm, ref, entry, args)`` and return ``(value, event)`` where *event* is
the container read or write the call performed, or ``None``.  Builtins
mutate the heap directly; the machine decides whether the event is
observable.
"""

from __future__ import annotations

import math
import zlib
from typing import Any, Callable

from .vm import (
    MAX_CONTAINER_ITEMS,
    GuestRuntimeError,
    Operators,
    display,
    from_key,
    iter_items,
    new_array,
    sort_key,
    to_key,
    truthy,
    type_name,
    values_equal,
)
from .vm_types import GuestException, HeapArray, HeapMap, HeapRef, StepEvent, VMState
from . import constants


def _arity(name: str, args: list[Any], lo: int, hi: int | None = None):
    hi = lo if hi is None else hi
    if not lo <= len(args) <= hi:
        expected = str(lo) if lo == hi else f"{lo} to {hi}"
        raise GuestRuntimeError(
            "TypeError", f"{name}() takes {expected} arguments ({len(args)} given)"
        )


def _int_arg(name: str, val: Any) -> int:
    if isinstance(val, bool) or not isinstance(val, int):
        raise GuestRuntimeError(
            "TypeError", f"{name}() expects an integer, got {type(val).__name__}"
        )
    return val


# ── Core builtins ────────────────────────────────────────────────


def _builtin_len(args: list[Any], vm: VMState) -> Any:
    _arity("len", args, 1)
    val = args[0]
    if isinstance(val, str):
        return len(val)
    entry = vm.deref(val)
    if isinstance(entry, HeapArray):
        return len(entry.items)
    if isinstance(entry, HeapMap):
        return len(entry.entries)
    raise GuestRuntimeError("TypeError", f"object of type '{type_name(vm, val)}' has no len()")


def _builtin_range(args: list[Any], vm: VMState) -> Any:
    _arity("range", args, 1, 3)
    bounds = [_int_arg("range", a) for a in args]
    if len(bounds) == 3 and bounds[2] == 0:
        raise GuestRuntimeError("ValueError", "range() arg 3 must not be zero")
    span = range(*bounds)
    if len(span) > MAX_CONTAINER_ITEMS:
        raise GuestRuntimeError("MemoryError", "range too large")
    return new_array(vm, list(span))


def _builtin_print(args: list[Any], vm: VMState) -> Any:
    vm.console.append(" ".join(display(vm, a) for a in args))
    return None


def _builtin_int(args: list[Any], vm: VMState) -> Any:
    _arity("int", args, 0, 2)
    if not args:
        return 0
    val = args[0]
    if isinstance(val, str):
        base = _int_arg("int", args[1]) if len(args) > 1 else 10
        try:
            return int(val.strip(), base)
        except ValueError:
            raise GuestRuntimeError(
                "ValueError", f"invalid literal for int() with base {base}: {val!r}"
            ) from None
    if isinstance(val, (int, float)):
        try:
            return int(val)
        except (OverflowError, ValueError) as exc:
            raise GuestRuntimeError(type(exc).__name__, str(exc)) from None
    raise GuestRuntimeError(
        "TypeError", f"int() argument must be a string or a number, not '{type_name(vm, val)}'"
    )


def _builtin_float(args: list[Any], vm: VMState) -> Any:
    _arity("float", args, 0, 1)
    if not args:
        return 0.0
    val = args[0]
    if isinstance(val, (int, float, str)):
        try:
            return float(val)
        except ValueError:
            raise GuestRuntimeError(
                "ValueError", f"could not convert string to float: {val!r}"
            ) from None
        except OverflowError as exc:
            raise GuestRuntimeError("OverflowError", str(exc)) from None
    raise GuestRuntimeError(
        "TypeError", f"float() argument must be a string or a number, not '{type_name(vm, val)}'"
    )


def _builtin_str(args: list[Any], vm: VMState) -> Any:
    return display(vm, args[0]) if args else ""


def _builtin_bool(args: list[Any], vm: VMState) -> Any:
    return truthy(vm, args[0]) if args else False


def _builtin_abs(args: list[Any], vm: VMState) -> Any:
    _arity("abs", args, 1)
    val = args[0]
    if isinstance(val, (int, float)):
        return abs(val)
    if vm.is_javascript:
        return float("nan")
    raise GuestRuntimeError("TypeError", f"bad operand type for abs(): '{type_name(vm, val)}'")


def _extremum(name: str, args: list[Any], vm: VMState, pick: Callable) -> Any:
    if not args:
        raise GuestRuntimeError("TypeError", f"{name} expected at least 1 argument, got 0")
    items = iter_items(vm, args[0]) if len(args) == 1 else list(args)
    if not items:
        raise GuestRuntimeError("ValueError", f"{name}() arg is an empty sequence")
    try:
        return pick(items, key=lambda v: sort_key(vm, v))
    except TypeError:
        raise GuestRuntimeError(
            "TypeError", f"'{'>' if name == 'max' else '<'}' not supported between mixed types"
        ) from None


def _builtin_max(args: list[Any], vm: VMState) -> Any:
    return _extremum("max", args, vm, max)


def _builtin_min(args: list[Any], vm: VMState) -> Any:
    return _extremum("min", args, vm, min)


def _builtin_sum(args: list[Any], vm: VMState) -> Any:
    _arity("sum", args, 1, 2)
    total = args[1] if len(args) > 1 else 0
    for item in iter_items(vm, args[0]):
        if isinstance(item, str):
            raise GuestRuntimeError("TypeError", "sum() can't sum strings")
        total = Operators.eval_binop(vm, "+", total, item)
    return total


def _sorted_items(vm: VMState, items: list[Any]) -> list[Any]:
    try:
        return sorted(items, key=lambda v: sort_key(vm, v))
    except TypeError:
        raise GuestRuntimeError(
            "TypeError", "'<' not supported between mixed types"
        ) from None


def _builtin_sorted(args: list[Any], vm: VMState) -> Any:
    _arity("sorted", args, 1)
    return new_array(vm, _sorted_items(vm, iter_items(vm, args[0])))


def _builtin_list(args: list[Any], vm: VMState) -> Any:
    _arity("list", args, 0, 1)
    return new_array(vm, iter_items(vm, args[0]) if args else [])


def _builtin_tuple(args: list[Any], vm: VMState) -> Any:
    _arity("tuple", args, 0, 1)
    return new_array(vm, iter_items(vm, args[0]) if args else [], "tuple")


def _builtin_set(args: list[Any], vm: VMState) -> Any:
    _arity("set", args, 0, 1)
    return new_array(vm, iter_items(vm, args[0]) if args else [], "set")


def _pairs_to_map(vm: VMState, source: Any) -> HeapRef:
    entry = vm.deref(source)
    if isinstance(entry, HeapMap):
        return vm.alloc(HeapMap(entries=dict(entry.entries)))
    entries: dict[Any, Any] = {}
    for pair in iter_items(vm, source):
        items = iter_items(vm, pair)
        if len(items) != 2:
            raise GuestRuntimeError(
                "ValueError", "dictionary update sequence element has wrong length"
            )
        entries[to_key(vm, items[0])] = items[1]
    return vm.alloc(HeapMap(entries=entries))


def _builtin_dict(args: list[Any], vm: VMState) -> Any:
    _arity("dict", args, 0, 1)
    if not args:
        return vm.alloc(HeapMap())
    return _pairs_to_map(vm, args[0])


def _builtin_enumerate(args: list[Any], vm: VMState) -> Any:
    _arity("enumerate", args, 1, 2)
    start = _int_arg("enumerate", args[1]) if len(args) > 1 else 0
    return new_array(
        vm,
        [
            new_array(vm, [start + i, item], "tuple")
            for i, item in enumerate(iter_items(vm, args[0]))
        ],
    )


def _builtin_zip(args: list[Any], vm: VMState) -> Any:
    columns = [iter_items(vm, a) for a in args]
    return new_array(vm, [new_array(vm, list(row), "tuple") for row in zip(*columns)])


def _builtin_reversed(args: list[Any], vm: VMState) -> Any:
    _arity("reversed", args, 1)
    return new_array(vm, list(reversed(iter_items(vm, args[0]))))


def _builtin_clock(args: list[Any], vm: VMState) -> Any:
    """Logical clock: one microsecond per executed instruction."""
    return vm.ticks / 1_000_000


def _builtin_random(args: list[Any], vm: VMState) -> Any:
    return vm.rng.random()


def _builtin_randint(args: list[Any], vm: VMState) -> Any:
    _arity("randint", args, 2)
    lo, hi = _int_arg("randint", args[0]), _int_arg("randint", args[1])
    if lo > hi:
        raise GuestRuntimeError("ValueError", f"empty range for randint({lo}, {hi})")
    return vm.rng.randint(lo, hi)


def _builtin_id(args: list[Any], vm: VMState) -> Any:
    _arity("id", args, 1)
    val = args[0]
    if isinstance(val, HeapRef):
        return int(val.addr.rsplit("_", 1)[1])
    return zlib.crc32(repr(val).encode("utf-8"))


def _builtin_format(args: list[Any], vm: VMState) -> Any:
    _arity("format", args, 1, 2)
    spec = args[1] if len(args) > 1 else ""
    val = args[0]
    if isinstance(val, HeapRef):
        return display(vm, val)
    try:
        return format(val, spec)
    except (ValueError, TypeError) as exc:
        raise GuestRuntimeError("ValueError", str(exc)) from None


def _builtin_ord(args: list[Any], vm: VMState) -> Any:
    _arity("ord", args, 1)
    val = args[0]
    if not isinstance(val, str) or len(val) != 1:
        raise GuestRuntimeError("TypeError", "ord() expected a character")
    return ord(val)


def _builtin_chr(args: list[Any], vm: VMState) -> Any:
    _arity("chr", args, 1)
    code = _int_arg("chr", args[0])
    if not 0 <= code <= 0x10FFFF:
        raise GuestRuntimeError("ValueError", "chr() arg not in range(0x110000)")
    return chr(code)


def _exception_factory(kind: str) -> Callable[[list[Any], VMState], Any]:
    def _build(args: list[Any], vm: VMState) -> Any:
        return GuestException(kind=kind, message=display(vm, args[0]) if args else "")

    return _build


# ── Frontend-internal builtins ───────────────────────────────────


def _builtin_slice(args: list[Any], vm: VMState) -> Any:
    obj, start, stop, step = (args + [None] * 4)[:4]
    if step == 0:
        raise GuestRuntimeError("ValueError", "slice step cannot be zero")
    for bound in (start, stop, step):
        if bound is not None:
            _int_arg("slice", bound)
    window = slice(start, stop, step)
    if isinstance(obj, str):
        return obj[window]
    entry = vm.deref(obj)
    if isinstance(entry, HeapArray) and entry.type_hint != "set":
        return new_array(vm, entry.items[window], entry.type_hint)
    raise GuestRuntimeError("TypeError", f"'{type_name(vm, obj)}' object is not subscriptable")


def _builtin_iter(args: list[Any], vm: VMState) -> Any:
    """The sequence a for-each loop walks by index.

    Lists and tuples are walked live; maps, sets and strings are copied.
    """
    entry = vm.deref(args[0])
    if isinstance(entry, HeapArray) and entry.type_hint != "set":
        return args[0]
    return new_array(vm, iter_items(vm, args[0]))


# ── JavaScript globals ───────────────────────────────────────────


def _js_number_arg(val: Any) -> float | int:
    if isinstance(val, bool):
        return int(val)
    if isinstance(val, (int, float)):
        return val
    return float("nan")


def _js_math(fn: Callable[[float], Any]) -> Callable[[list[Any], VMState], Any]:
    def _apply(args: list[Any], vm: VMState) -> Any:
        x = _js_number_arg(args[0]) if args else float("nan")
        if isinstance(x, float) and not math.isfinite(x):
            return x
        return fn(x)

    return _apply


def _js_math_sqrt(args: list[Any], vm: VMState) -> Any:
    x = _js_number_arg(args[0]) if args else float("nan")
    return float("nan") if x < 0 else math.sqrt(x)


def _js_math_pow(args: list[Any], vm: VMState) -> Any:
    _arity("Math.pow", args, 2)
    return Operators.eval_binop(vm, "**", _js_number_arg(args[0]), _js_number_arg(args[1]))


def _js_math_extremum(pick: Callable, empty: float) -> Callable[[list[Any], VMState], Any]:
    def _apply(args: list[Any], vm: VMState) -> Any:
        nums = [_js_number_arg(a) for a in args]
        if any(isinstance(n, float) and math.isnan(n) for n in nums):
            return float("nan")
        return pick(nums) if nums else empty

    return _apply


def _js_math_sign(x: float) -> int:
    return (x > 0) - (x < 0)


def _js_number(args: list[Any], vm: VMState) -> Any:
    if not args:
        return 0
    val = args[0]
    if isinstance(val, str):
        text = val.strip()
        if not text:
            return 0
        try:
            return float(text)
        except ValueError:
            return float("nan")
    return _js_number_arg(val)


def _js_parse_int(args: list[Any], vm: VMState) -> Any:
    _arity("parseInt", args, 1, 2)
    text = display(vm, args[0]).strip()
    radix = args[1] if len(args) > 1 and isinstance(args[1], int) else 10
    sign = -1 if text.startswith("-") else 1
    text = text.lstrip("+-")
    digits = ""
    for ch in text:
        if ch.isascii() and ch.isalnum() and int(ch, 36) < radix:
            digits += ch
        else:
            break
    if not digits:
        return float("nan")
    return sign * int(digits, radix)


def _js_parse_float(args: list[Any], vm: VMState) -> Any:
    _arity("parseFloat", args, 1)
    text = display(vm, args[0]).strip()
    # longest numeric prefix
    for end in range(len(text), 0, -1):
        try:
            return float(text[:end])
        except ValueError:
            continue
    return float("nan")


def _js_number_is_integer(args: list[Any], vm: VMState) -> Any:
    val = args[0] if args else None
    return isinstance(val, int) and not isinstance(val, bool) or (
        isinstance(val, float) and val.is_integer()
    )


def _js_object_keys(args: list[Any], vm: VMState) -> Any:
    _arity("Object.keys", args, 1)
    entry = vm.deref(args[0])
    if isinstance(entry, HeapArray):
        return new_array(vm, list(range(len(entry.items))))
    if isinstance(entry, HeapMap):
        return new_array(vm, list(entry.entries))
    return new_array(vm, [])


def _js_object_values(args: list[Any], vm: VMState) -> Any:
    _arity("Object.values", args, 1)
    entry = vm.deref(args[0])
    if isinstance(entry, HeapMap):
        return new_array(vm, list(entry.entries.values()))
    return new_array(vm, iter_items(vm, args[0]) if entry is not None else [])


def _js_object_entries(args: list[Any], vm: VMState) -> Any:
    _arity("Object.entries", args, 1)
    entry = vm.deref(args[0])
    if not isinstance(entry, HeapMap):
        return new_array(vm, [])
    return new_array(vm, [new_array(vm, [k, v]) for k, v in entry.entries.items()])


def _js_array(args: list[Any], vm: VMState) -> Any:
    if len(args) == 1 and isinstance(args[0], int) and not isinstance(args[0], bool):
        if not 0 <= args[0] <= MAX_CONTAINER_ITEMS:
            raise GuestRuntimeError("RangeError", "Invalid array length")
        return new_array(vm, [None] * args[0])
    return new_array(vm, list(args))


def _js_array_from(args: list[Any], vm: VMState) -> Any:
    _arity("Array.from", args, 1)
    return new_array(vm, iter_items(vm, args[0]))


def _js_array_is_array(args: list[Any], vm: VMState) -> Any:
    entry = vm.deref(args[0]) if args else None
    return isinstance(entry, HeapArray) and entry.type_hint == "list"


def _js_map(args: list[Any], vm: VMState) -> Any:
    return _pairs_to_map(vm, args[0]) if args and args[0] is not None else vm.alloc(HeapMap())


def _js_set(args: list[Any], vm: VMState) -> Any:
    return new_array(vm, iter_items(vm, args[0]) if args and args[0] is not None else [], "set")


# ── Container methods ────────────────────────────────────────────


def _write(ref: HeapRef, operation: str, method: str, **values: Any) -> StepEvent:
    return StepEvent(
        operation=operation, detail={"method": method}, values=values, container=ref.addr
    )


def _check_growth(entry: HeapArray, extra: int):
    if len(entry.items) + extra > MAX_CONTAINER_ITEMS:
        raise GuestRuntimeError("MemoryError", "sequence too large")


def _find(vm: VMState, items: list[Any], target: Any) -> int:
    return next((i for i, x in enumerate(items) if values_equal(vm, x, target)), -1)


def _list_append(vm, ref, entry, args):
    _arity("append", args, 1)
    _check_growth(entry, 1)
    entry.items.append(args[0])
    return None, _write(ref, "array_write", "append", index=len(entry.items) - 1, before=None, after=args[0])


def _list_push(vm, ref, entry, args):
    _check_growth(entry, len(args))
    start = len(entry.items)
    entry.items.extend(args)
    event = _write(ref, "array_write", "push", index=start, before=None, after=args[-1] if args else None)
    return len(entry.items), event


def _list_pop(vm, ref, entry, args):
    _arity("pop", args, 0, 1)
    if not entry.items:
        if vm.is_javascript:
            return None, None
        raise GuestRuntimeError("IndexError", "pop from empty list")
    index = _int_arg("pop", args[0]) if args else len(entry.items) - 1
    if not -len(entry.items) <= index < len(entry.items):
        raise GuestRuntimeError("IndexError", "pop index out of range")
    index %= len(entry.items)
    value = entry.items.pop(index)
    return value, _write(ref, "array_write", "pop", index=index, before=value, after=None)


def _list_shift(vm, ref, entry, args):
    if not entry.items:
        return None, None
    value = entry.items.pop(0)
    return value, _write(ref, "array_write", "shift", index=0, before=value, after=None)


def _list_insert(vm, ref, entry, args):
    _arity("insert", args, 2)
    _check_growth(entry, 1)
    index = _int_arg("insert", args[0])
    size = len(entry.items)
    index = max(0, min(size, index + size if index < 0 else index))
    entry.items.insert(index, args[1])
    return None, _write(ref, "array_write", "insert", index=index, before=None, after=args[1])


def _list_unshift(vm, ref, entry, args):
    _check_growth(entry, len(args))
    entry.items[0:0] = list(args)
    return len(entry.items), _write(ref, "array_write", "unshift", index=0, before=None, after=args[0] if args else None)


def _list_remove(vm, ref, entry, args):
    _arity("remove", args, 1)
    index = _find(vm, entry.items, args[0])
    if index < 0:
        raise GuestRuntimeError("ValueError", "list.remove(x): x not in list")
    value = entry.items.pop(index)
    return None, _write(ref, "array_write", "remove", index=index, before=value, after=None)


def _list_index(vm, ref, entry, args):
    _arity("index", args, 1)
    index = _find(vm, entry.items, args[0])
    if index < 0:
        raise GuestRuntimeError("ValueError", f"{display(vm, args[0], True)} is not in list")
    return index, None


def _list_index_of(vm, ref, entry, args):
    return _find(vm, entry.items, args[0] if args else None), None


def _list_includes(vm, ref, entry, args):
    return _find(vm, entry.items, args[0] if args else None) >= 0, None


def _list_count(vm, ref, entry, args):
    _arity("count", args, 1)
    return sum(1 for x in entry.items if values_equal(vm, x, args[0])), None


def _list_extend(vm, ref, entry, args):
    _arity("extend", args, 1)
    extra = iter_items(vm, args[0])
    _check_growth(entry, len(extra))
    start = len(entry.items)
    entry.items.extend(extra)
    event = StepEvent(
        operation="array_write",
        detail={"method": "extend", "index": start, "count": len(extra)},
        container=ref.addr,
    )
    return None, event


def _whole_write(ref: HeapRef, method: str) -> StepEvent:
    return StepEvent(operation="array_write", detail={"method": method}, container=ref.addr)


def _list_sort(vm, ref, entry, args):
    if vm.is_javascript:
        # JavaScript's default sort compares string forms
        entry.items.sort(key=lambda v: display(vm, v))
        return ref, _whole_write(ref, "sort")
    entry.items[:] = _sorted_items(vm, entry.items)
    return None, _whole_write(ref, "sort")


def _list_reverse(vm, ref, entry, args):
    entry.items.reverse()
    return (ref if vm.is_javascript else None), _whole_write(ref, "reverse")


def _list_fill(vm, ref, entry, args):
    entry.items[:] = [args[0] if args else None] * len(entry.items)
    return ref, _whole_write(ref, "fill")


def _list_clear(vm, ref, entry, args):
    entry.items.clear()
    return None, _whole_write(ref, "clear")


def _list_copy(vm, ref, entry, args):
    return new_array(vm, list(entry.items), entry.type_hint), None


def _list_slice(vm, ref, entry, args):
    start = args[0] if args else None
    stop = args[1] if len(args) > 1 else None
    return new_array(vm, entry.items[start:stop]), None


def _list_join(vm, ref, entry, args):
    sep = args[0] if args else ","
    return sep.join("" if v is None else display(vm, v) for v in entry.items), None


def _list_concat(vm, ref, entry, args):
    items = list(entry.items)
    for arg in args:
        other = vm.deref(arg)
        items.extend(other.items if isinstance(other, HeapArray) else [arg])
    return new_array(vm, items), None


LIST_METHODS: dict[str, Callable] = {
    "append": _list_append,
    "pop": _list_pop,
    "insert": _list_insert,
    "remove": _list_remove,
    "index": _list_index,
    "count": _list_count,
    "extend": _list_extend,
    "sort": _list_sort,
    "reverse": _list_reverse,
    "copy": _list_copy,
    "clear": _list_clear,
}

JS_ARRAY_METHODS: dict[str, Callable] = {
    "push": _list_push,
    "pop": _list_pop,
    "shift": _list_shift,
    "unshift": _list_unshift,
    "indexOf": _list_index_of,
    "includes": _list_includes,
    "slice": _list_slice,
    "join": _list_join,
    "concat": _list_concat,
    "fill": _list_fill,
    "sort": _list_sort,
    "reverse": _list_reverse,
}

TUPLE_METHODS: dict[str, Callable] = {
    "index": _list_index,
    "count": _list_count,
}


def _set_add(vm, ref, entry, args):
    _arity("add", args, 1)
    if _find(vm, entry.items, args[0]) >= 0:
        return (ref if vm.is_javascript else None), None
    _check_growth(entry, 1)
    entry.items.append(args[0])
    event = _write(ref, "array_write", "add", index=len(entry.items) - 1, before=None, after=args[0])
    return (ref if vm.is_javascript else None), event


def _set_discard(vm, ref, entry, args, *, strict: bool = False):
    index = _find(vm, entry.items, args[0] if args else None)
    if index < 0:
        if strict:
            raise GuestRuntimeError("KeyError", display(vm, args[0], True))
        return False, None
    value = entry.items.pop(index)
    return True, _write(ref, "array_write", "remove", index=index, before=value, after=None)


def _set_remove(vm, ref, entry, args):
    _, event = _set_discard(vm, ref, entry, args, strict=True)
    return None, event


def _set_python_discard(vm, ref, entry, args):
    _, event = _set_discard(vm, ref, entry, args)
    return None, event


def _set_union(vm, ref, entry, args):
    return new_array(vm, entry.items + iter_items(vm, args[0]), "set"), None


def _set_intersection(vm, ref, entry, args):
    other = iter_items(vm, args[0])
    return new_array(vm, [x for x in entry.items if _find(vm, other, x) >= 0], "set"), None


def _set_difference(vm, ref, entry, args):
    other = iter_items(vm, args[0])
    return new_array(vm, [x for x in entry.items if _find(vm, other, x) < 0], "set"), None


SET_METHODS: dict[str, Callable] = {
    "add": _set_add,
    "remove": _set_remove,
    "discard": _set_python_discard,
    "union": _set_union,
    "intersection": _set_intersection,
    "difference": _set_difference,
    "copy": _list_copy,
    "clear": _list_clear,
}

JS_SET_METHODS: dict[str, Callable] = {
    "add": _set_add,
    "has": _list_includes,
    "delete": _set_discard,
    "clear": _list_clear,
}


def _map_get(vm, ref, entry, args):
    _arity("get", args, 1, 2)
    key = to_key(vm, args[0])
    default = args[1] if len(args) > 1 else None
    value = entry.entries.get(key, default)
    event = StepEvent(
        operation="map_read",
        detail={"method": "get"},
        values={"key": args[0], "value": value},
        container=ref.addr,
    )
    return value, event


def _map_set(vm, ref, entry, args):
    _arity("set", args, 2)
    key = to_key(vm, args[0])
    before = entry.entries.get(key)
    if key not in entry.entries and len(entry.entries) >= MAX_CONTAINER_ITEMS:
        raise GuestRuntimeError("MemoryError", "map too large")
    entry.entries[key] = args[1]
    return ref, _write(ref, "map_write", "set", key=args[0], before=before, after=args[1])


def _map_has(vm, ref, entry, args):
    _arity("has", args, 1)
    return to_key(vm, args[0]) in entry.entries, None


def _map_delete(vm, ref, entry, args):
    _arity("delete", args, 1)
    key = to_key(vm, args[0])
    if key not in entry.entries:
        return False, None
    before = entry.entries.pop(key)
    return True, _write(ref, "map_write", "delete", key=args[0], before=before, after=None)


def _map_pop(vm, ref, entry, args):
    _arity("pop", args, 1, 2)
    key = to_key(vm, args[0])
    if key not in entry.entries:
        if len(args) > 1:
            return args[1], None
        raise GuestRuntimeError("KeyError", display(vm, args[0], True))
    before = entry.entries.pop(key)
    return before, _write(ref, "map_write", "pop", key=args[0], before=before, after=None)


def _map_setdefault(vm, ref, entry, args):
    _arity("setdefault", args, 1, 2)
    key = to_key(vm, args[0])
    if key in entry.entries:
        return entry.entries[key], None
    default = args[1] if len(args) > 1 else None
    entry.entries[key] = default
    return default, _write(ref, "map_write", "setdefault", key=args[0], before=None, after=default)


def _map_update(vm, ref, entry, args):
    _arity("update", args, 1)
    other = vm.deref(_pairs_to_map(vm, args[0]))
    entry.entries.update(other.entries)
    event = StepEvent(operation="map_write", detail={"method": "update"}, container=ref.addr)
    return None, event


def _map_keys(vm, ref, entry, args):
    return new_array(vm, [from_key(vm, k) for k in entry.entries]), None


def _map_values(vm, ref, entry, args):
    return new_array(vm, list(entry.entries.values())), None


def _map_items(vm, ref, entry, args):
    return new_array(
        vm,
        [new_array(vm, [from_key(vm, k), v], "tuple") for k, v in entry.entries.items()],
    ), None


def _map_entries(vm, ref, entry, args):
    return new_array(vm, [new_array(vm, [k, v]) for k, v in entry.entries.items()]), None


def _map_clear(vm, ref, entry, args):
    entry.entries.clear()
    return None, StepEvent(operation="map_write", detail={"method": "clear"}, container=ref.addr)


def _map_copy(vm, ref, entry, args):
    return vm.alloc(HeapMap(entries=dict(entry.entries))), None


DICT_METHODS: dict[str, Callable] = {
    "get": _map_get,
    "keys": _map_keys,
    "values": _map_values,
    "items": _map_items,
    "pop": _map_pop,
    "setdefault": _map_setdefault,
    "update": _map_update,
    "clear": _map_clear,
    "copy": _map_copy,
}

JS_MAP_METHODS: dict[str, Callable] = {
    "get": _map_get,
    "set": _map_set,
    "has": _map_has,
    "hasOwnProperty": _map_has,
    "delete": _map_delete,
    "keys": _map_keys,
    "values": _map_values,
    "entries": _map_entries,
    "clear": _map_clear,
}


# ── String methods ───────────────────────────────────────────────


def _str_split(vm: VMState, text: str, args: list[Any]) -> Any:
    sep = args[0] if args else None
    if vm.is_javascript and sep == "":
        return new_array(vm, list(text))
    if sep == "":
        raise GuestRuntimeError("ValueError", "empty separator")
    return new_array(vm, text.split(sep))


def _str_join(vm: VMState, text: str, args: list[Any]) -> Any:
    _arity("join", args, 1)
    parts = iter_items(vm, args[0])
    if not all(isinstance(p, str) for p in parts):
        raise GuestRuntimeError("TypeError", "sequence item: expected str instance")
    return text.join(parts)


def _str_index(vm: VMState, text: str, args: list[Any]) -> Any:
    pos = text.find(*args)
    if pos < 0:
        raise GuestRuntimeError("ValueError", "substring not found")
    return pos


def _str_char_at(vm: VMState, text: str, args: list[Any]) -> Any:
    index = args[0] if args else 0
    return text[index] if 0 <= index < len(text) else ""


def _str_substring(vm: VMState, text: str, args: list[Any]) -> Any:
    start = max(0, args[0] if args else 0)
    stop = max(0, args[1] if len(args) > 1 and args[1] is not None else len(text))
    lo, hi = sorted((start, stop))
    return text[lo:hi]


def _str_repeat(vm: VMState, text: str, args: list[Any]) -> Any:
    return Operators.eval_binop(vm, "*", text, args[0] if args else 0)


STRING_METHODS: dict[str, Callable] = {
    "upper": lambda vm, s, a: s.upper(),
    "lower": lambda vm, s, a: s.lower(),
    "strip": lambda vm, s, a: s.strip(*a),
    "lstrip": lambda vm, s, a: s.lstrip(*a),
    "rstrip": lambda vm, s, a: s.rstrip(*a),
    "split": _str_split,
    "join": _str_join,
    "startswith": lambda vm, s, a: s.startswith(*a),
    "endswith": lambda vm, s, a: s.endswith(*a),
    "find": lambda vm, s, a: s.find(*a),
    "index": _str_index,
    "replace": lambda vm, s, a: s.replace(*a),
    "isdigit": lambda vm, s, a: s.isdigit(),
    "isalpha": lambda vm, s, a: s.isalpha(),
    "isalnum": lambda vm, s, a: s.isalnum(),
    "count": lambda vm, s, a: s.count(*a),
}

JS_STRING_METHODS: dict[str, Callable] = {
    "toUpperCase": lambda vm, s, a: s.upper(),
    "toLowerCase": lambda vm, s, a: s.lower(),
    "trim": lambda vm, s, a: s.strip(),
    "split": _str_split,
    "includes": lambda vm, s, a: a[0] in s,
    "indexOf": lambda vm, s, a: s.find(*a),
    "startsWith": lambda vm, s, a: s.startswith(*a),
    "endsWith": lambda vm, s, a: s.endswith(*a),
    "slice": lambda vm, s, a: s[slice(*(a[:2] or [None]))],
    "substring": _str_substring,
    "charAt": _str_char_at,
    "repeat": _str_repeat,
}


# ── Tables ───────────────────────────────────────────────────────


class Builtins:
    """Tables of built-in functions, methods and constants, per guest language."""

    TABLE: dict[str, Any] = {
        "len": _builtin_len,
        "print": _builtin_print,
        constants.SLICE_BUILTIN: _builtin_slice,
        constants.ITER_BUILTIN: _builtin_iter,
    }

    PYTHON_TABLE: dict[str, Any] = {
        "range": _builtin_range,
        "int": _builtin_int,
        "float": _builtin_float,
        "str": _builtin_str,
        "bool": _builtin_bool,
        "abs": _builtin_abs,
        "max": _builtin_max,
        "min": _builtin_min,
        "sum": _builtin_sum,
        "sorted": _builtin_sorted,
        "list": _builtin_list,
        "tuple": _builtin_tuple,
        "set": _builtin_set,
        "dict": _builtin_dict,
        "enumerate": _builtin_enumerate,
        "zip": _builtin_zip,
        "reversed": _builtin_reversed,
        "time": _builtin_clock,
        "clock": _builtin_clock,
        "random": _builtin_random,
        "randint": _builtin_randint,
        "id": _builtin_id,
        "format": _builtin_format,
        "ord": _builtin_ord,
        "chr": _builtin_chr,
        **{
            kind: _exception_factory(kind)
            for kind in (
                "Exception",
                "ValueError",
                "IndexError",
                "KeyError",
                "TypeError",
                "RuntimeError",
                "ZeroDivisionError",
                "AssertionError",
            )
        },
    }

    JAVASCRIPT_TABLE: dict[str, Any] = {
        "Math.floor": _js_math(math.floor),
        "Math.ceil": _js_math(math.ceil),
        "Math.round": _js_math(lambda x: math.floor(x + 0.5)),
        "Math.trunc": _js_math(math.trunc),
        "Math.abs": _js_math(abs),
        "Math.sign": _js_math(_js_math_sign),
        "Math.sqrt": _js_math_sqrt,
        "Math.pow": _js_math_pow,
        "Math.max": _js_math_extremum(max, float("-inf")),
        "Math.min": _js_math_extremum(min, float("inf")),
        "Math.random": _builtin_random,
        "Date.now": lambda args, vm: vm.ticks,
        "Object.keys": _js_object_keys,
        "Object.values": _js_object_values,
        "Object.entries": _js_object_entries,
        "Array": _js_array,
        "Array.from": _js_array_from,
        "Array.isArray": _js_array_is_array,
        "Map": _js_map,
        "Set": _js_set,
        "String": _builtin_str,
        "Number": _js_number,
        "Number.isInteger": _js_number_is_integer,
        "parseInt": _js_parse_int,
        "parseFloat": _js_parse_float,
        **{
            kind: _exception_factory(kind)
            for kind in ("Error", "TypeError", "RangeError")
        },
    }

    JAVASCRIPT_CONSTANTS: dict[str, Any] = {
        "Infinity": float("inf"),
        "NaN": float("nan"),
        "Math.PI": math.pi,
        "Math.E": math.e,
        "Number.MAX_SAFE_INTEGER": 2**53 - 1,
        "Number.MIN_SAFE_INTEGER": -(2**53 - 1),
        "Number.POSITIVE_INFINITY": float("inf"),
        "Number.NEGATIVE_INFINITY": float("-inf"),
    }

    @classmethod
    def lookup(cls, name: str, vm: VMState) -> Callable | None:
        if name in cls.TABLE:
            return cls.TABLE[name]
        table = cls.JAVASCRIPT_TABLE if vm.is_javascript else cls.PYTHON_TABLE
        return table.get(name)

    @classmethod
    def constant(cls, name: str, vm: VMState) -> tuple[bool, Any]:
        if vm.is_javascript and name in cls.JAVASCRIPT_CONSTANTS:
            return True, cls.JAVASCRIPT_CONSTANTS[name]
        return False, None

    @classmethod
    def container_methods(cls, entry: Any, vm: VMState) -> dict[str, Callable]:
        js = vm.is_javascript
        if isinstance(entry, HeapMap):
            return JS_MAP_METHODS if js else DICT_METHODS
        if entry.type_hint == "set":
            return JS_SET_METHODS if js else SET_METHODS
        if entry.type_hint == "tuple":
            return TUPLE_METHODS
        return JS_ARRAY_METHODS if js else LIST_METHODS

    @classmethod
    def string_methods(cls, vm: VMState) -> dict[str, Callable]:
        return JS_STRING_METHODS if vm.is_javascript else STRING_METHODS
