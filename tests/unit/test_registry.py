"""Tests for the function and class registry."""

from steptrace.api import lower_source
from steptrace.cfg import build_cfg
from steptrace.registry import build_registry, parse_class_ref, parse_func_ref


def _registry(source: str, language: str = "python"):
    instructions = lower_source(source, language)
    return build_registry(instructions, build_cfg(instructions))


class TestRefParsing:
    def test_function_ref(self):
        result = parse_func_ref("<function:add@func_add_0>")

        assert result.matched
        assert (result.name, result.label) == ("add", "func_add_0")

    def test_class_ref(self):
        result = parse_class_ref("<class:Node@class_Node_0>")

        assert result.matched
        assert result.name == "Node"

    def test_non_ref_strings(self):
        assert not parse_func_ref("add").matched
        assert not parse_func_ref(42).matched
        assert not parse_class_ref("<function:add@func_add_0>").matched


class TestRegistry:
    def test_free_function_params(self):
        reg = _registry("def add(a, b=1):\n    return a + b\n")
        label = reg.functions["add"]

        assert reg.func_params[label] == ["a", "b"]
        assert reg.func_defaults[label] == {"b": "1"}

    def test_methods_are_not_free_functions(self):
        source = "class P:\n    def __init__(self, x):\n        self.x = x\n    def get(self):\n        return self.x\n"
        reg = _registry(source)

        assert "P" in reg.classes
        assert set(reg.class_methods["P"]) == {"__init__", "get"}
        assert "get" not in reg.functions
        assert reg.constructor_label("P") == reg.class_methods["P"]["__init__"]

    def test_js_constructor(self):
        reg = _registry("class C { constructor(v) { this.v = v; } }", "javascript")

        assert reg.constructor_label("C") == reg.class_methods["C"]["constructor"]
        assert reg.func_params[reg.constructor_label("C")] == ["this", "v"]

    def test_class_without_constructor(self):
        reg = _registry("class E:\n    pass\n")

        assert reg.constructor_label("E") == ""
