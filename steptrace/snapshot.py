"""Snapshot rendering — guest values to tagged, JSON-ready records.

Every value renders as ``{"kind": ..., "value": ...}``.  Sequences and maps
nest inline and carry their heap id; objects render as ``{"ref": id}`` and
their fields live once in a node arena, so cyclic structures never produce
back-references.  Rendering never touches the heap.
"""

from __future__ import annotations

import math
from collections import deque
from typing import Any

from .trace_types import StepDelta, ValueKind
from .vm import display, is_internal_name
from .vm_types import (
    ClassRef,
    FunctionRef,
    HeapArray,
    HeapMap,
    HeapObject,
    HeapRef,
    StepEvent,
    VMState,
)
from . import constants

# Values rendered per snapshot before containers are elided to references.
MAX_RENDERED_VALUES = 200_000


def _scalar(value: Any) -> dict[str, Any]:
    return {"kind": ValueKind.SCALAR.value, "value": value}


class SnapshotRenderer:
    """Renders values for one Step; collects the objects they reach."""

    def __init__(self, vm: VMState):
        self.vm = vm
        self.nodes: dict[str, Any] = {}
        self._pending: deque[str] = deque()
        self._active: set[str] = set()
        self._rendered = 0

    def render(self, val: Any, _depth: int = 0) -> dict[str, Any]:
        vm = self.vm
        self._rendered += 1
        if val is None or isinstance(val, (bool, int, str)):
            return _scalar(val)
        if isinstance(val, float):
            return _scalar(val if math.isfinite(val) else display(vm, val))
        if isinstance(val, tuple):
            return {
                "kind": ValueKind.SEQUENCE.value,
                "type": "tuple",
                "value": [self.render(v, _depth + 1) for v in val],
            }
        if not isinstance(val, HeapRef):
            return _scalar(display(vm, val))
        entry = vm.heap[val.addr]
        if isinstance(entry, HeapObject):
            kind = node_kind(entry)
            if val.addr not in self.nodes:
                self.nodes[val.addr] = None
                self._pending.append(val.addr)
            return {"kind": kind.value, "value": {"ref": val.addr}}
        kind = ValueKind.MAP if isinstance(entry, HeapMap) else ValueKind.SEQUENCE
        if val.addr in self._active:
            return {"kind": kind.value, "id": val.addr, "value": {"ref": val.addr, "cycle": True}}
        if _depth >= constants.MAX_NESTING or self._rendered > MAX_RENDERED_VALUES:
            return {"kind": kind.value, "id": val.addr, "value": {"ref": val.addr, "elided": True}}
        self._active.add(val.addr)
        try:
            if isinstance(entry, HeapArray):
                return {
                    "kind": kind.value,
                    "id": val.addr,
                    "type": entry.type_hint,
                    "value": [self.render(v, _depth + 1) for v in entry.items],
                }
            return {
                "kind": kind.value,
                "id": val.addr,
                "value": [
                    {"key": self.render(k, _depth + 1), "value": self.render(v, _depth + 1)}
                    for k, v in entry.entries.items()
                ],
            }
        finally:
            self._active.discard(val.addr)

    def finish(self) -> dict[str, Any]:
        """Render every object reached so far into the node arena."""
        while self._pending:
            addr = self._pending.popleft()
            entry = self.vm.heap[addr]
            self.nodes[addr] = {
                "type": entry.type_hint,
                "kind": node_kind(entry).value,
                "fields": {name: self.render(v) for name, v in entry.fields.items()},
            }
        return dict(sorted(self.nodes.items()))


def node_kind(entry: HeapObject) -> ValueKind:
    if any(name in constants.TREE_NODE_FIELDS for name in entry.fields):
        return ValueKind.TREE_NODE
    return ValueKind.GRAPH_NODE


# ── Visibility ───────────────────────────────────────────────────


def is_visible(name: str, val: Any) -> bool:
    return not is_internal_name(name) and not isinstance(val, (FunctionRef, ClassRef))


def visible_variables(vm: VMState) -> dict[str, Any]:
    """Module globals overlaid with the current frame's locals."""
    names: dict[str, Any] = {
        n: v for n, v in vm.global_frame.local_vars.items() if is_visible(n, v)
    }
    if vm.depth > 0:
        names.update(
            (n, v) for n, v in vm.current_frame.local_vars.items() if is_visible(n, v)
        )
    return names


def container_path(vm: VMState, roots: dict[str, Any], wanted: str) -> str | None:
    """Shortest access path (``grid[1]``, ``node.left``) from a variable to *wanted*."""
    queue: deque[tuple[Any, str]] = deque((v, n) for n, v in roots.items())
    seen: set[str] = set()
    while queue:
        val, path = queue.popleft()
        if not isinstance(val, HeapRef) or val.addr in seen:
            continue
        if val.addr == wanted:
            return path
        seen.add(val.addr)
        entry = vm.heap[val.addr]
        if isinstance(entry, HeapArray):
            queue.extend((item, f"{path}[{i}]") for i, item in enumerate(entry.items))
        elif isinstance(entry, HeapMap):
            queue.extend(
                (item, f"{path}[{display(vm, k, True)}]") for k, item in entry.entries.items()
            )
        else:
            queue.extend((item, f"{path}.{name}") for name, item in entry.fields.items())
    return None


# ── Step payload ─────────────────────────────────────────────────


def render_detail(renderer: SnapshotRenderer, event: StepEvent) -> dict[str, Any]:
    detail: dict[str, Any] = dict(event.detail)
    for key, val in event.values.items():
        if isinstance(val, dict):
            detail[key] = {name: renderer.render(v) for name, v in val.items()}
        else:
            detail[key] = renderer.render(val)
    return detail


def compute_delta(
    previous: dict[str, Any] | None,
    previous_nodes: dict[str, Any] | None,
    variables: dict[str, Any],
    nodes: dict[str, Any],
    target: str | None = None,
) -> StepDelta:
    previous = previous or {}
    previous_nodes = previous_nodes or {}
    changed = {
        name: val
        for name, val in variables.items()
        if previous.get(name) != val or name == target
    }
    removed = [name for name in previous if name not in variables]
    changed_nodes = {
        addr: rec for addr, rec in nodes.items() if previous_nodes.get(addr) != rec
    }
    return StepDelta(changed=changed, removed=removed, nodes=changed_nodes)
