"""Instrumented Interpreter — runs a CFG and yields one Step per observable operation.

The machine never decides when to stop for resource reasons: callers pull
steps with ``next_step(budget)`` and consult the governor between calls.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from .cfg import CFG
from .executor import LocalExecutor, bind_arguments
from .governor import estimate_memory
from .ir import IRInstruction, Opcode
from .registry import FunctionRegistry
from .snapshot import (
    SnapshotRenderer,
    compute_delta,
    container_path,
    is_visible,
    render_detail,
    visible_variables,
)
from .trace_types import FaultInfo, OperationKind, Step
from .vm import GuestRuntimeError, apply_update, display, to_guest
from .vm_types import (
    FunctionRef,
    GuestFault,
    StackFrame,
    StateUpdate,
    StepEvent,
    VMState,
)
from . import constants

logger = logging.getLogger(__name__)

# Instructions between memory estimates; a full estimate walks the heap.
MEMORY_SAMPLE_INTERVAL = 256


class MachineStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TracingMachine:
    """Executes one guest program, pausing after every emitted Step."""

    def __init__(
        self,
        cfg: CFG,
        registry: FunctionRegistry,
        *,
        language: str = "python",
        entry_point: str | None = None,
        arguments: list[Any] | tuple = (),
        inputs: dict[str, Any] | None = None,
        seed: int = 0,
    ):
        if entry_point is not None and entry_point not in registry.functions:
            raise ValueError(f"Unknown entry point: {entry_point}")
        self.cfg = cfg
        self.registry = registry
        self.vm = VMState(language=language, seed=seed)
        self.vm.call_stack.append(StackFrame(function_name=constants.MAIN_FRAME_NAME))
        for name, value in (inputs or {}).items():
            self.vm.global_frame.local_vars[name] = to_guest(self.vm, value)
        self.status = MachineStatus.RUNNING
        self.fault: FaultInfo | None = None
        self.memory_estimate = 0

        self._entry_point = entry_point
        self._arguments = [to_guest(self.vm, a) for a in arguments]
        self._entry_invoked = False
        self._return_value: Any = None
        self._returned = False
        self._label = cfg.entry
        self._ip = 0
        self._sequence = 0
        self._last_location = (0, 0)
        self._previous_variables: dict[str, Any] | None = None
        self._previous_nodes: dict[str, Any] | None = None

    # ── Public surface ───────────────────────────────────────────

    @property
    def halted(self) -> bool:
        return self.status is not MachineStatus.RUNNING

    @property
    def steps_emitted(self) -> int:
        return self._sequence

    @property
    def console(self) -> list[str]:
        return list(self.vm.console)

    def return_value(self) -> dict[str, Any] | None:
        """Tagged form of the program's return value, once completed."""
        if self.status is not MachineStatus.COMPLETED or not self._returned:
            return None
        return SnapshotRenderer(self.vm).render(self._return_value)

    def next_step(self, budget: int = constants.INSTRUCTION_BUDGET) -> Step | None:
        """Run until the next observable Step, at most *budget* instructions.

        Returns ``None`` when the machine halted or the budget ran out;
        ``halted`` tells the two apart.
        """
        for _ in range(budget):
            if self.halted:
                return None
            step = self._tick()
            if step is not None:
                return step
        return None

    # ── Execution ────────────────────────────────────────────────

    def _tick(self) -> Step | None:
        block = self.cfg.blocks[self._label]
        if self._ip >= len(block.instructions):
            if block.successors:
                self._label = block.successors[0]
                self._ip = 0
                return None
            return self._end_of_module()

        inst = block.instructions[self._ip]
        if inst.opcode == Opcode.LABEL:
            self._ip += 1
            return None

        vm = self.vm
        vm.ticks += 1
        if vm.ticks % MEMORY_SAMPLE_INTERVAL == 0:
            self.memory_estimate = estimate_memory(vm)
        if not inst.is_synthetic:
            loc = inst.source_location
            self._last_location = (loc.start_line, loc.start_col)

        result = LocalExecutor.execute(inst, vm, self.cfg, self.registry, self._label, self._ip)
        if result.failed:
            return self._fail(result.fault)
        update = result.update

        if inst.opcode == Opcode.RETURN:
            return self._return(inst, update)

        label, ip = self._label, self._ip
        apply_update(vm, update)
        if update.call_push is not None:
            callee = vm.current_frame
            callee.return_ip = ip + 1
            callee.result_reg = None if callee.is_constructor else inst.result_reg
            self._label, self._ip = update.next_label, 0
            logger.debug("call %s (depth %d)", callee.function_name, vm.depth)
        elif update.next_label:
            self._label, self._ip = update.next_label, 0
        else:
            self._ip += 1
        return self._observe(inst, update.event, block.instructions, ip)

    def _return(self, inst: IRInstruction, update: StateUpdate) -> Step | None:
        vm = self.vm
        frame = vm.current_frame
        value = update.return_value
        if vm.depth == 0:
            step = self._emit_event(inst, update.event, OperationKind.RETURN)
            self._record_return(value)
            self._complete()
            return step

        operation = (
            OperationKind.RETURN
            if vm.depth == 1 and not frame.is_constructor
            else OperationKind.CALL_EXIT
        )
        step = self._emit_event(inst, update.event, operation)
        apply_update(vm, update)
        if operation is OperationKind.RETURN:
            self._record_return(value)
        if frame.return_label is None:
            self._complete()
            return step
        if frame.result_reg is not None:
            vm.current_frame.registers[frame.result_reg] = value
        self._label, self._ip = frame.return_label, frame.return_ip
        return step

    def _end_of_module(self) -> Step | None:
        if self._entry_point is None or self._entry_invoked:
            self._complete()
            return None
        self._entry_invoked = True
        return self._invoke_entry(self._entry_point)

    def _invoke_entry(self, name: str) -> Step | None:
        vm = self.vm
        found, target = vm.lookup(name)
        if not found or not isinstance(target, FunctionRef):
            shown = display(vm, target) if found else "undefined"
            return self._fail(GuestFault("TypeError", f"entry point '{name}' is {shown}, not a function"))
        try:
            bindings = bind_arguments(vm, self.registry, target.label, target.name, self._arguments)
        except GuestRuntimeError as exc:
            return self._fail(GuestFault(exc.kind, exc.message))
        vm.call_stack.append(StackFrame(function_name=target.name, local_vars=bindings))
        self._label, self._ip = target.label, 0
        loc = self.cfg.first_location(target.label)
        if loc is not None:
            self._last_location = (loc.start_line, loc.start_col)
        logger.info("Invoking entry point %s with %d argument(s)", name, len(bindings))
        event = StepEvent(
            operation=OperationKind.CALL_ENTRY.value,
            detail={"function": target.name},
            values={"arguments": dict(bindings)},
        )
        return self._make_step(OperationKind.CALL_ENTRY, self._last_location, event)

    def _record_return(self, value: Any):
        """The last outermost return is the program's result."""
        self._return_value = value
        self._returned = True

    def _complete(self):
        self.status = MachineStatus.COMPLETED
        logger.info("Program completed after %d steps", self._sequence)

    def _fail(self, fault: GuestFault) -> Step:
        line, column = self._last_location
        self.status = MachineStatus.FAILED
        self.fault = FaultInfo(kind=fault.kind, message=fault.message, line=line, column=column)
        logger.info("Guest fault at %d:%d: %s", line, column, fault)
        event = StepEvent(
            operation=OperationKind.FAULT.value,
            detail={"kind": fault.kind, "message": fault.message},
        )
        return self._make_step(OperationKind.FAULT, self._last_location, event)

    # ── Observation ──────────────────────────────────────────────

    def _observe(
        self,
        inst: IRInstruction,
        event: StepEvent | None,
        instructions: list[IRInstruction],
        ip: int,
    ) -> Step | None:
        if event is None or inst.is_synthetic:
            return None
        operation = OperationKind(event.operation)
        if operation == OperationKind.COMPARE and _folded_into_branch(inst, instructions, ip):
            return None
        return self._emit_event(inst, event, operation)

    def _emit_event(
        self, inst: IRInstruction, event: StepEvent | None, operation: OperationKind
    ) -> Step | None:
        if event is None:
            return None
        vm = self.vm
        variable = None
        if event.container is not None:
            path = container_path(vm, visible_variables(vm), event.container)
            if path is None:
                return None
            detail = {**event.detail, "container": {"id": event.container, "path": path}}
            if operation == OperationKind.ASSIGN:
                detail["target"] = f"{path}.{event.target}"
            event = event.model_copy(update={"detail": detail})
        elif operation == OperationKind.ASSIGN:
            if not is_visible(event.target, event.values.get("value")):
                return None
            variable = event.target
            event = event.model_copy(update={"detail": {**event.detail, "target": variable}})
        loc = inst.source_location
        return self._make_step(operation, (loc.start_line, loc.start_col), event, variable)

    def _make_step(
        self,
        operation: OperationKind,
        location: tuple[int, int],
        event: StepEvent,
        target: str | None = None,
    ) -> Step:
        vm = self.vm
        renderer = SnapshotRenderer(vm)
        variables = {name: renderer.render(val) for name, val in visible_variables(vm).items()}
        detail = render_detail(renderer, event)
        nodes = renderer.finish()
        delta = compute_delta(
            self._previous_variables, self._previous_nodes, variables, nodes, target
        )
        step = Step(
            sequence=self._sequence,
            line=location[0],
            column=location[1],
            operation=operation,
            function=vm.current_frame.function_name,
            depth=vm.depth,
            variables=variables,
            nodes=nodes,
            detail=detail,
            delta=delta,
        )
        self._sequence += 1
        self._previous_variables = variables
        self._previous_nodes = nodes
        logger.debug("step %d %s at %d:%d", step.sequence, operation.value, step.line, step.column)
        return step


def _folded_into_branch(inst: IRInstruction, instructions: list[IRInstruction], ip: int) -> bool:
    """True when the next instruction is a located branch on this comparison."""
    if ip + 1 >= len(instructions):
        return False
    nxt = instructions[ip + 1]
    return (
        nxt.opcode == Opcode.BRANCH_IF
        and not nxt.is_synthetic
        and nxt.operands[:1] == [inst.result_reg]
    )
