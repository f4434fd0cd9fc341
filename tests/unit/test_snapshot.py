"""Tests for snapshot rendering, visibility and step deltas."""

from steptrace.snapshot import (
    SnapshotRenderer,
    compute_delta,
    container_path,
    visible_variables,
)
from steptrace.vm_types import (
    FunctionRef,
    HeapArray,
    HeapMap,
    HeapObject,
    StackFrame,
    VMState,
)


def _vm() -> VMState:
    vm = VMState()
    vm.call_stack.append(StackFrame(function_name="<main>"))
    return vm


class TestRender:
    def test_scalars(self):
        renderer = SnapshotRenderer(_vm())

        assert renderer.render(3) == {"kind": "scalar", "value": 3}
        assert renderer.render(None) == {"kind": "scalar", "value": None}

    def test_non_finite_float_is_displayed(self):
        renderer = SnapshotRenderer(_vm())

        assert renderer.render(float("inf")) == {"kind": "scalar", "value": "inf"}

    def test_sequence_carries_id_and_type(self):
        vm = _vm()
        ref = vm.alloc(HeapArray(items=[1, 2]))

        rendered = SnapshotRenderer(vm).render(ref)

        assert rendered["kind"] == "sequence"
        assert rendered["id"] == "arr_0"
        assert rendered["type"] == "list"
        assert [v["value"] for v in rendered["value"]] == [1, 2]

    def test_map_entries(self):
        vm = _vm()
        ref = vm.alloc(HeapMap(entries={"a": 1}))

        rendered = SnapshotRenderer(vm).render(ref)

        assert rendered["kind"] == "map"
        assert rendered["value"] == [
            {"key": {"kind": "scalar", "value": "a"}, "value": {"kind": "scalar", "value": 1}}
        ]

    def test_cyclic_list_renders_a_reference(self):
        vm = _vm()
        ref = vm.alloc(HeapArray())
        vm.heap[ref.addr].items.append(ref)

        rendered = SnapshotRenderer(vm).render(ref)

        assert rendered["value"][0]["value"] == {"ref": ref.addr, "cycle": True}


class TestNodeArena:
    def test_tree_node_fields_go_to_arena(self):
        vm = _vm()
        leaf = vm.alloc(HeapObject(type_hint="Node", fields={"value": 1, "left": None}))
        root = vm.alloc(HeapObject(type_hint="Node", fields={"value": 2, "left": leaf}))
        renderer = SnapshotRenderer(vm)

        rendered = renderer.render(root)
        nodes = renderer.finish()

        assert rendered == {"kind": "tree_node", "value": {"ref": root.addr}}
        assert set(nodes) == {leaf.addr, root.addr}
        assert nodes[root.addr]["fields"]["left"] == {"kind": "tree_node", "value": {"ref": leaf.addr}}

    def test_object_without_tree_fields_is_graph_node(self):
        vm = _vm()
        ref = vm.alloc(HeapObject(type_hint="Point", fields={"x": 1}))
        renderer = SnapshotRenderer(vm)

        assert renderer.render(ref)["kind"] == "graph_node"
        assert renderer.finish()[ref.addr]["type"] == "Point"

    def test_self_referencing_object_is_rendered_once(self):
        vm = _vm()
        ref = vm.alloc(HeapObject(type_hint="Node", fields={}))
        vm.heap[ref.addr].fields["parent"] = ref
        renderer = SnapshotRenderer(vm)

        renderer.render(ref)
        nodes = renderer.finish()

        assert list(nodes) == [ref.addr]


class TestVisibility:
    def test_hides_internal_names_and_callables(self):
        vm = _vm()
        vm.global_frame.local_vars.update(
            {"x": 1, "__iter_0": 2, "f": FunctionRef(name="f", label="func_f_0")}
        )

        assert visible_variables(vm) == {"x": 1}

    def test_locals_overlay_globals(self):
        vm = _vm()
        vm.global_frame.local_vars.update({"x": 1, "g": 5})
        vm.call_stack.append(StackFrame(function_name="f", local_vars={"x": 2}))

        assert visible_variables(vm) == {"x": 2, "g": 5}


class TestContainerPath:
    def test_nested_index_path(self):
        vm = _vm()
        inner = vm.alloc(HeapArray(items=[1]))
        outer = vm.alloc(HeapArray(items=[0, inner]))

        assert container_path(vm, {"grid": outer}, inner.addr) == "grid[1]"

    def test_field_path(self):
        vm = _vm()
        child = vm.alloc(HeapObject(type_hint="Node"))
        root = vm.alloc(HeapObject(type_hint="Node", fields={"left": child}))

        assert container_path(vm, {"root": root}, child.addr) == "root.left"

    def test_unreachable_is_none(self):
        vm = _vm()
        orphan = vm.alloc(HeapArray())

        assert container_path(vm, {"x": 1}, orphan.addr) is None


class TestDelta:
    def test_first_step_reports_everything(self):
        delta = compute_delta(None, None, {"x": 1}, {})

        assert delta.changed == {"x": 1}
        assert delta.removed == []

    def test_changed_and_removed(self):
        delta = compute_delta({"x": 1, "y": 2}, {}, {"x": 3}, {})

        assert delta.changed == {"x": 3}
        assert delta.removed == ["y"]

    def test_target_is_reported_even_when_unchanged(self):
        delta = compute_delta({"x": 1}, {}, {"x": 1}, {}, target="x")

        assert delta.changed == {"x": 1}

    def test_only_changed_nodes(self):
        before = {"obj_0": {"fields": {"v": 1}}, "obj_1": {"fields": {}}}
        after = {"obj_0": {"fields": {"v": 2}}, "obj_1": {"fields": {}}}

        delta = compute_delta({}, before, {}, after)

        assert delta.nodes == {"obj_0": {"fields": {"v": 2}}}
