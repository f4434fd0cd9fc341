"""Local executor — one handler per opcode, each returning an ExecutionResult."""

from __future__ import annotations

import logging
from typing import Any, Callable

from .builtins import Builtins
from .cfg import CFG
from .ir import COMPARISON_OPERATORS, IRInstruction, Opcode
from .registry import FunctionRegistry
from .vm import (
    MAX_CONTAINER_ITEMS,
    GuestRuntimeError,
    Operators,
    check_size,
    display,
    normalize_number,
    parse_const,
    resolve_reg,
    to_key,
    truthy,
    type_name,
)
from .vm_types import (
    ClassRef,
    Comparison,
    ExecutionResult,
    FunctionRef,
    GuestException,
    HeapArray,
    HeapMap,
    HeapObject,
    HeapRef,
    HeapWrite,
    StackFramePush,
    StateUpdate,
    StepEvent,
    VMState,
)
from . import constants

logger = logging.getLogger(__name__)

EXCEPTION_KINDS: frozenset[str] = frozenset(
    {
        "Exception",
        "ValueError",
        "IndexError",
        "KeyError",
        "TypeError",
        "RuntimeError",
        "ZeroDivisionError",
        "AssertionError",
        "Error",
        "RangeError",
    }
)


# ── Helpers ──────────────────────────────────────────────────────


def _undefined_name(vm: VMState, name: str) -> GuestRuntimeError:
    if vm.is_javascript:
        return GuestRuntimeError("ReferenceError", f"{name} is not defined")
    return GuestRuntimeError("NameError", f"name '{name}' is not defined")


def _no_attribute(vm: VMState, val: Any, name: str) -> GuestRuntimeError:
    if vm.is_javascript:
        if val is None:
            return GuestRuntimeError(
                "TypeError", f"Cannot read properties of undefined (reading '{name}')"
            )
        return GuestRuntimeError("TypeError", f"{name} is not a function")
    return GuestRuntimeError(
        "AttributeError", f"'{type_name(vm, val)}' object has no attribute '{name}'"
    )


def _not_subscriptable(vm: VMState, val: Any) -> GuestRuntimeError:
    if vm.is_javascript:
        return GuestRuntimeError(
            "TypeError", "Cannot read properties of undefined (reading index)"
        )
    return GuestRuntimeError(
        "TypeError", f"'{type_name(vm, val)}' object is not subscriptable"
    )


def _array_index(vm: VMState, entry: HeapArray, idx: Any, *, for_write: bool) -> int | None:
    """Normalise *idx* into a position in *entry*, or ``None`` if it is out of range."""
    if not isinstance(idx, int):
        raise GuestRuntimeError(
            "TypeError",
            f"{entry.type_hint} indices must be integers, not {type_name(vm, idx)}",
        )
    size = len(entry.items)
    if vm.is_javascript:
        if idx < 0:
            return None
        if idx >= size and not for_write:
            return None
        if idx >= MAX_CONTAINER_ITEMS:
            raise GuestRuntimeError("RangeError", "Invalid array length")
        return idx
    if not -size <= idx < size:
        return None
    return idx % size


def _invoke_builtin(fn: Callable, *args: Any) -> Any:
    try:
        return fn(*args)
    except (TypeError, ValueError, IndexError) as exc:
        logger.debug("Builtin raised %s: %s", type(exc).__name__, exc)
        raise GuestRuntimeError("TypeError", str(exc)) from None
    except OverflowError as exc:
        raise GuestRuntimeError("OverflowError", str(exc)) from None


def bind_arguments(
    vm: VMState,
    registry: FunctionRegistry,
    func_label: str,
    func_name: str,
    args: list[Any],
) -> dict[str, Any]:
    """Bind positional *args* to the parameters of *func_label*.

    Missing arguments fall back to literal defaults; JavaScript fills the
    rest with ``undefined`` and ignores extras, Python raises ``TypeError``.
    """
    params = registry.func_params.get(func_label, [])
    defaults = registry.func_defaults.get(func_label, {})
    if len(args) > len(params) and not vm.is_javascript:
        raise GuestRuntimeError(
            "TypeError",
            f"{func_name}() takes {len(params)} positional arguments "
            f"but {len(args)} were given",
        )
    bindings: dict[str, Any] = {}
    for i, name in enumerate(params):
        if i < len(args):
            bindings[name] = args[i]
        elif name in defaults:
            bindings[name] = parse_const(defaults[name], vm)
        elif vm.is_javascript:
            bindings[name] = None
        else:
            raise GuestRuntimeError(
                "TypeError",
                f"{func_name}() missing required positional argument: '{name}'",
            )
    return bindings


def _dispatch_call(
    inst: IRInstruction,
    vm: VMState,
    cfg: CFG,
    registry: FunctionRegistry,
    current_label: str,
    func_name: str,
    func_label: str,
    args: list[Any],
    *,
    register_writes: dict[str, Any] | None = None,
    is_constructor: bool = False,
) -> ExecutionResult:
    if func_label not in cfg.blocks:
        raise GuestRuntimeError("TypeError", f"'{func_name}' is not callable")
    if vm.depth + 1 > constants.MAX_CALL_DEPTH:
        raise GuestRuntimeError("RecursionError", "maximum recursion depth exceeded")
    bindings = bind_arguments(vm, registry, func_label, func_name, args)
    return ExecutionResult.success(
        StateUpdate(
            register_writes=register_writes or {},
            call_push=StackFramePush(
                function_name=func_name,
                return_label=current_label,
                is_constructor=is_constructor,
            ),
            next_label=func_label,
            var_writes=bindings,
            event=StepEvent(
                operation="call_entry",
                detail={"function": func_name},
                values={"arguments": dict(bindings)},
            ),
            reasoning=f"call {func_name}, dispatch to {func_label}",
        )
    )


def _construct(
    inst: IRInstruction,
    vm: VMState,
    cfg: CFG,
    registry: FunctionRegistry,
    current_label: str,
    cls_ref: ClassRef,
    args: list[Any],
) -> ExecutionResult:
    obj = vm.alloc(HeapObject(type_hint=cls_ref.name))
    init_label = registry.constructor_label(cls_ref.name)
    if not init_label:
        if args and not vm.is_javascript:
            raise GuestRuntimeError("TypeError", f"{cls_ref.name}() takes no arguments")
        return ExecutionResult.success(
            StateUpdate(
                register_writes={inst.result_reg: obj},
                reasoning=f"new {cls_ref.name}() → {obj.addr} (no constructor)",
            )
        )
    init_name = next(n for n, lbl in registry.class_methods[cls_ref.name].items() if lbl == init_label)
    return _dispatch_call(
        inst,
        vm,
        cfg,
        registry,
        current_label,
        f"{cls_ref.name}.{init_name}",
        init_label,
        [obj] + args,
        register_writes={inst.result_reg: obj},
        is_constructor=True,
    )


def _call_value(
    inst: IRInstruction,
    vm: VMState,
    cfg: CFG,
    registry: FunctionRegistry,
    current_label: str,
    target: Any,
    args: list[Any],
) -> ExecutionResult:
    if isinstance(target, FunctionRef):
        return _dispatch_call(
            inst, vm, cfg, registry, current_label, target.name, target.label, args
        )
    if isinstance(target, ClassRef):
        return _construct(inst, vm, cfg, registry, current_label, target, args)
    raise GuestRuntimeError(
        "TypeError", f"'{type_name(vm, target)}' object is not callable"
    )


def _result(vm: VMState, inst: IRInstruction, val: Any, reasoning: str, event=None):
    return ExecutionResult.success(
        StateUpdate(
            register_writes={inst.result_reg: check_size(normalize_number(vm, val))},
            event=event,
            reasoning=reasoning,
        )
    )


# ── Handlers ─────────────────────────────────────────────────────


def _handle_const(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    raw = inst.operands[0] if inst.operands else "None"
    return _result(vm, inst, parse_const(raw, vm), f"const {raw!r} → {inst.result_reg}")


def _handle_load_var(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    name = inst.operands[0]
    found, val = vm.lookup(name)
    if not found:
        found, val = Builtins.constant(name, vm)
    if not found and name in EXCEPTION_KINDS:
        found, val = True, GuestException(kind=name)
    if not found:
        raise _undefined_name(vm, name)
    return _result(vm, inst, val, f"load {name} → {inst.result_reg}")


def _handle_store_var(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    name = inst.operands[0]
    val = resolve_reg(vm, inst.operands[1])
    return ExecutionResult.success(
        StateUpdate(
            var_writes={name: val},
            event=StepEvent(operation="assign", target=name, values={"value": val}),
            reasoning=f"store {name}",
        )
    )


def _handle_param(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    name = str(inst.operands[0])[len(constants.PARAM_PREFIX) :]
    frame = vm.current_frame
    if name in frame.local_vars:
        val = frame.local_vars[name]
    elif len(inst.operands) > 1:
        val = parse_const(inst.operands[1], vm)
    elif vm.is_javascript:
        val = None
    else:
        raise GuestRuntimeError(
            "TypeError", f"{frame.function_name}() missing required positional argument: '{name}'"
        )
    return ExecutionResult.success(
        StateUpdate(register_writes={inst.result_reg: val}, reasoning=f"param {name}")
    )


def _handle_branch(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    return ExecutionResult.success(
        StateUpdate(next_label=inst.label, reasoning=f"branch → {inst.label}")
    )


def _handle_branch_if(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    cond_reg = inst.operands[0]
    cond = resolve_reg(vm, cond_reg)
    true_label, false_label = inst.branch_targets
    taken = truthy(vm, cond)
    target = true_label if taken else false_label
    detail: dict[str, Any] = {"result": taken, "taken": target}
    values: dict[str, Any] = {}
    comparison = vm.current_frame.comparisons.pop(cond_reg, None)
    if comparison is not None:
        detail["operator"] = comparison.operator
        values = {"lhs": comparison.lhs, "rhs": comparison.rhs}
    return ExecutionResult.success(
        StateUpdate(
            next_label=target,
            event=StepEvent(operation="branch", detail=detail, values=values),
            reasoning=f"branch_if {cond!r} → {target}",
        )
    )


def _handle_loop_iter(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    counter, *control_names = inst.operands
    frame = vm.current_frame
    iteration = frame.local_vars.get(counter, 0) + 1
    control: dict[str, Any] = {}
    for name in control_names:
        found, val = vm.lookup(name)
        if found and not isinstance(val, (FunctionRef, ClassRef)):
            control[name] = val
    return ExecutionResult.success(
        StateUpdate(
            var_writes={counter: iteration},
            event=StepEvent(
                operation="loop_iteration",
                detail={"iteration": iteration},
                values={"control": control},
            ),
            reasoning=f"loop iteration {iteration}",
        )
    )


def _handle_new_object(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    type_hint = inst.operands[0] if inst.operands else ""
    if type_hint == "dict":
        ref = vm.alloc(HeapMap())
    else:
        ref = vm.alloc(HeapObject(type_hint=type_hint or None))
    return _result(vm, inst, ref, f"new {type_hint} → {ref.addr}")


def _handle_new_array(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    type_hint = inst.operands[0] if inst.operands else "list"
    size = resolve_reg(vm, inst.operands[1]) if len(inst.operands) > 1 else 0
    if not isinstance(size, int) or not 0 <= size <= MAX_CONTAINER_ITEMS:
        raise GuestRuntimeError("MemoryError", "sequence too large")
    ref = vm.alloc(HeapArray(type_hint=type_hint, items=[None] * size))
    return _result(vm, inst, ref, f"new {type_hint}[{size}] → {ref.addr}")


def _handle_load_field(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    obj_val = resolve_reg(vm, inst.operands[0])
    field_name = inst.operands[1]
    entry = vm.deref(obj_val)
    if isinstance(entry, HeapObject):
        if field_name in entry.fields:
            return _result(vm, inst, entry.fields[field_name], f"load .{field_name}")
        if vm.is_javascript:
            return _result(vm, inst, None, f"load .{field_name} (undefined)")
    elif vm.is_javascript:
        if isinstance(entry, HeapMap):
            key = to_key(vm, field_name)
            if key in entry.entries or field_name != "size":
                value = entry.entries.get(key)
                event = StepEvent(
                    operation="map_read",
                    values={"key": field_name, "value": value},
                    container=obj_val.addr,
                )
                return _result(vm, inst, value, f"load .{field_name}", event)
            return _result(vm, inst, len(entry.entries), "load .size")
        if isinstance(entry, HeapArray) and field_name in ("length", "size"):
            return _result(vm, inst, len(entry.items), f"load .{field_name}")
        if isinstance(obj_val, str) and field_name == "length":
            return _result(vm, inst, len(obj_val), "load .length")
    raise _no_attribute(vm, obj_val, field_name)


def _handle_store_field(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    obj_val = resolve_reg(vm, inst.operands[0])
    field_name = inst.operands[1]
    val = resolve_reg(vm, inst.operands[2])
    entry = vm.deref(obj_val)
    if isinstance(entry, HeapObject):
        return ExecutionResult.success(
            StateUpdate(
                heap_writes=[HeapWrite(obj_addr=obj_val.addr, field=field_name, value=val)],
                event=StepEvent(
                    operation="assign",
                    target=field_name,
                    values={"value": val},
                    container=obj_val.addr,
                ),
                reasoning=f"store {obj_val.addr}.{field_name}",
            )
        )
    if vm.is_javascript and isinstance(entry, HeapMap):
        key = to_key(vm, field_name)
        return ExecutionResult.success(
            StateUpdate(
                heap_writes=[HeapWrite(obj_addr=obj_val.addr, field=key, value=val)],
                event=StepEvent(
                    operation="map_write",
                    values={"key": field_name, "before": entry.entries.get(key), "after": val},
                    container=obj_val.addr,
                ),
                reasoning=f"store {obj_val.addr}.{field_name}",
            )
        )
    raise _no_attribute(vm, obj_val, field_name)


def _handle_load_index(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    obj_val = resolve_reg(vm, inst.operands[0])
    idx = resolve_reg(vm, inst.operands[1])
    if isinstance(obj_val, str):
        if not isinstance(idx, int):
            raise GuestRuntimeError("TypeError", "string indices must be integers")
        if -len(obj_val) <= idx < len(obj_val) and not (vm.is_javascript and idx < 0):
            return _result(vm, inst, obj_val[idx], "load str[idx]")
        if vm.is_javascript:
            return _result(vm, inst, None, "load str[idx] (undefined)")
        raise GuestRuntimeError("IndexError", "string index out of range")
    entry = vm.deref(obj_val)
    if isinstance(entry, HeapArray) and entry.type_hint != "set":
        pos = _array_index(vm, entry, idx, for_write=False)
        if pos is None and not vm.is_javascript:
            raise GuestRuntimeError("IndexError", f"{entry.type_hint} index out of range")
        value = None if pos is None else entry.items[pos]
        event = StepEvent(
            operation="array_read",
            values={"index": idx, "value": value},
            container=obj_val.addr,
        )
        return _result(vm, inst, value, f"load {obj_val.addr}[{idx!r}]", event)
    if isinstance(entry, HeapMap):
        key = to_key(vm, idx)
        if key not in entry.entries and not vm.is_javascript:
            raise GuestRuntimeError("KeyError", display(vm, idx, True))
        value = entry.entries.get(key)
        event = StepEvent(
            operation="map_read",
            values={"key": idx, "value": value},
            container=obj_val.addr,
        )
        return _result(vm, inst, value, f"load {obj_val.addr}[{idx!r}]", event)
    raise _not_subscriptable(vm, obj_val)


def _handle_store_index(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    obj_val = resolve_reg(vm, inst.operands[0])
    idx = resolve_reg(vm, inst.operands[1])
    val = resolve_reg(vm, inst.operands[2])
    entry = vm.deref(obj_val)
    if isinstance(entry, HeapArray):
        if entry.type_hint == "set" or (entry.type_hint == "tuple" and not inst.is_synthetic):
            raise GuestRuntimeError(
                "TypeError", f"'{entry.type_hint}' object does not support item assignment"
            )
        pos = _array_index(vm, entry, idx, for_write=True)
        if pos is None:
            if vm.is_javascript:
                # negative indices become plain properties; not modelled
                raise GuestRuntimeError("RangeError", f"Invalid array index {idx}")
            raise GuestRuntimeError("IndexError", f"{entry.type_hint} assignment index out of range")
        before = entry.items[pos] if pos < len(entry.items) else None
        return ExecutionResult.success(
            StateUpdate(
                heap_writes=[HeapWrite(obj_addr=obj_val.addr, field=pos, value=val)],
                event=StepEvent(
                    operation="array_write",
                    values={"index": idx, "before": before, "after": val},
                    container=obj_val.addr,
                ),
                reasoning=f"store {obj_val.addr}[{idx!r}]",
            )
        )
    if isinstance(entry, HeapMap):
        key = to_key(vm, idx)
        if key not in entry.entries and len(entry.entries) >= MAX_CONTAINER_ITEMS:
            raise GuestRuntimeError("MemoryError", "map too large")
        return ExecutionResult.success(
            StateUpdate(
                heap_writes=[HeapWrite(obj_addr=obj_val.addr, field=key, value=val)],
                event=StepEvent(
                    operation="map_write",
                    values={"key": idx, "before": entry.entries.get(key), "after": val},
                    container=obj_val.addr,
                ),
                reasoning=f"store {obj_val.addr}[{idx!r}]",
            )
        )
    if vm.is_javascript and isinstance(entry, HeapObject):
        return _handle_store_field(
            inst.model_copy(update={"operands": [inst.operands[0], display(vm, idx), inst.operands[2]]}),
            vm,
        )
    raise GuestRuntimeError(
        "TypeError", f"'{type_name(vm, obj_val)}' object does not support item assignment"
    )


def _handle_binop(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    oper = inst.operands[0]
    lhs = resolve_reg(vm, inst.operands[1])
    rhs = resolve_reg(vm, inst.operands[2])
    result = Operators.eval_binop(vm, oper, lhs, rhs)
    event = None
    if oper in COMPARISON_OPERATORS:
        vm.current_frame.comparisons[inst.result_reg] = Comparison(
            operator=oper, lhs=lhs, rhs=rhs, result=result
        )
        event = StepEvent(
            operation="compare",
            detail={"operator": oper, "result": result},
            values={"lhs": lhs, "rhs": rhs},
        )
    return _result(vm, inst, result, f"binop {lhs!r} {oper} {rhs!r}", event)


def _handle_unop(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    oper = inst.operands[0]
    operand = resolve_reg(vm, inst.operands[1])
    return _result(vm, inst, Operators.eval_unop(vm, oper, operand), f"unop {oper}{operand!r}")


def _handle_call_function(
    inst: IRInstruction,
    vm: VMState,
    cfg: CFG,
    registry: FunctionRegistry,
    current_label: str,
    **kwargs: Any,
) -> ExecutionResult:
    func_name = inst.operands[0]
    args = [resolve_reg(vm, a) for a in inst.operands[1:]]

    # 1. User scope shadows builtins
    found, func_val = vm.lookup(func_name)
    if found:
        return _call_value(inst, vm, cfg, registry, current_label, func_val, args)

    # 2. Builtins
    builtin = Builtins.lookup(func_name, vm)
    if builtin is None:
        raise _undefined_name(vm, func_name)
    result = _invoke_builtin(builtin, args, vm)
    return _result(vm, inst, result, f"builtin {func_name}")


def _handle_call_method(
    inst: IRInstruction,
    vm: VMState,
    cfg: CFG,
    registry: FunctionRegistry,
    current_label: str,
    **kwargs: Any,
) -> ExecutionResult:
    obj_val = resolve_reg(vm, inst.operands[0])
    method_name = inst.operands[1]
    args = [resolve_reg(vm, a) for a in inst.operands[2:]]

    if isinstance(obj_val, str):
        method = Builtins.string_methods(vm).get(method_name)
        if method is None:
            raise _no_attribute(vm, obj_val, method_name)
        result = _invoke_builtin(method, vm, obj_val, args)
        return _result(vm, inst, result, f"str.{method_name}")

    entry = vm.deref(obj_val)
    if isinstance(entry, HeapObject):
        methods = registry.class_methods.get(entry.type_hint or "", {})
        func_label = methods.get(method_name)
        if func_label is None:
            field_val = entry.fields.get(method_name)
            if isinstance(field_val, (FunctionRef, ClassRef)):
                return _call_value(inst, vm, cfg, registry, current_label, field_val, args)
            raise _no_attribute(vm, obj_val, method_name)
        return _dispatch_call(
            inst,
            vm,
            cfg,
            registry,
            current_label,
            f"{entry.type_hint}.{method_name}",
            func_label,
            [obj_val] + args,
        )

    if isinstance(entry, (HeapArray, HeapMap)):
        method = Builtins.container_methods(entry, vm).get(method_name)
        if method is None:
            raise _no_attribute(vm, obj_val, method_name)
        result, event = _invoke_builtin(method, vm, obj_val, entry, args)
        return _result(vm, inst, result, f"{type_name(vm, obj_val)}.{method_name}", event)

    raise _no_attribute(vm, obj_val, method_name)


def _handle_call_unknown(
    inst: IRInstruction,
    vm: VMState,
    cfg: CFG,
    registry: FunctionRegistry,
    current_label: str,
    **kwargs: Any,
) -> ExecutionResult:
    target = resolve_reg(vm, inst.operands[0])
    args = [resolve_reg(vm, a) for a in inst.operands[1:]]
    return _call_value(inst, vm, cfg, registry, current_label, target, args)


def _handle_return(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    val = resolve_reg(vm, inst.operands[0]) if inst.operands else None
    frame = vm.current_frame
    return ExecutionResult.success(
        StateUpdate(
            return_value=val,
            call_pop=len(vm.call_stack) > 1,
            event=StepEvent(
                operation="return",
                detail={"function": frame.function_name},
                values={"value": val},
            ),
            reasoning=f"return {val!r}",
        )
    )


def _handle_throw(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    val = resolve_reg(vm, inst.operands[0]) if inst.operands else None
    if isinstance(val, GuestException):
        return ExecutionResult.failure(val.kind, val.message)
    default_kind = "Error" if vm.is_javascript else "Exception"
    return ExecutionResult.failure(default_kind, display(vm, val))


def _handle_unsupported(inst: IRInstruction, vm: VMState, **kwargs: Any) -> ExecutionResult:
    what = str(inst.operands[0]) if inst.operands else ""
    return ExecutionResult.failure(
        "NotImplementedError",
        f"unsupported construct: {what.removeprefix(constants.UNSUPPORTED_PREFIX)}",
    )


class LocalExecutor:
    """Dispatches IR instructions to handler functions."""

    DISPATCH: dict[Opcode, Any] = {
        Opcode.CONST: _handle_const,
        Opcode.LOAD_VAR: _handle_load_var,
        Opcode.STORE_VAR: _handle_store_var,
        Opcode.PARAM: _handle_param,
        Opcode.BRANCH: _handle_branch,
        Opcode.BRANCH_IF: _handle_branch_if,
        Opcode.LOOP_ITER: _handle_loop_iter,
        Opcode.NEW_OBJECT: _handle_new_object,
        Opcode.NEW_ARRAY: _handle_new_array,
        Opcode.LOAD_FIELD: _handle_load_field,
        Opcode.STORE_FIELD: _handle_store_field,
        Opcode.LOAD_INDEX: _handle_load_index,
        Opcode.STORE_INDEX: _handle_store_index,
        Opcode.BINOP: _handle_binop,
        Opcode.UNOP: _handle_unop,
        Opcode.CALL_FUNCTION: _handle_call_function,
        Opcode.CALL_METHOD: _handle_call_method,
        Opcode.CALL_UNKNOWN: _handle_call_unknown,
        Opcode.RETURN: _handle_return,
        Opcode.THROW: _handle_throw,
        Opcode.UNSUPPORTED: _handle_unsupported,
    }

    @classmethod
    def execute(
        cls,
        inst: IRInstruction,
        vm: VMState,
        cfg: CFG,
        registry: FunctionRegistry,
        current_label: str = "",
        ip: int = 0,
    ) -> ExecutionResult:
        handler = cls.DISPATCH[inst.opcode]
        try:
            return handler(
                inst=inst,
                vm=vm,
                cfg=cfg,
                registry=registry,
                current_label=current_label,
                ip=ip,
            )
        except GuestRuntimeError as exc:
            return ExecutionResult.failure(exc.kind, exc.message)
