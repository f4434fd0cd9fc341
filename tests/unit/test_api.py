"""Tests for the composable API functions in steptrace.api."""

import pytest

from steptrace.api import (
    build_cfg_from_source,
    dump_cfg,
    dump_ir,
    execute_traced,
    extract_function_source,
    lower_source,
)
from steptrace.cfg import CFG
from steptrace.ir import IRInstruction, Opcode
from steptrace.trace_types import ExecutionTrace, TerminationReason

SIMPLE_SOURCE = "x = 42\n"

FUNCTION_SOURCE = """\
def greet(name):
    return name

greet("world")
"""


class TestLowerSource:
    def test_returns_list_of_ir_instructions(self):
        result = lower_source(SIMPLE_SOURCE)
        assert isinstance(result, list)
        assert all(isinstance(inst, IRInstruction) for inst in result)

    def test_contains_expected_opcodes(self):
        result = lower_source(SIMPLE_SOURCE)
        opcodes = [inst.opcode for inst in result]
        assert Opcode.CONST in opcodes
        assert Opcode.STORE_VAR in opcodes

    def test_language_parameter(self):
        result = lower_source("let x = 42;\n", language="javascript")
        assert Opcode.STORE_VAR in [inst.opcode for inst in result]


class TestDumpIr:
    def test_contains_instruction_text(self):
        result = dump_ir(SIMPLE_SOURCE)
        assert "const" in result
        assert "42" in result

    def test_located_instructions_show_position(self):
        assert "# 1:0-1:6" in dump_ir(SIMPLE_SOURCE)


class TestBuildCfgFromSource:
    def test_returns_cfg(self):
        assert isinstance(build_cfg_from_source(SIMPLE_SOURCE), CFG)

    def test_cfg_has_entry_block(self):
        assert "entry" in build_cfg_from_source(SIMPLE_SOURCE).blocks

    def test_function_gets_its_own_block(self):
        labels = list(build_cfg_from_source(FUNCTION_SOURCE).blocks)
        assert any(label.startswith("func_greet") for label in labels)


class TestExecuteTraced:
    def test_module_run_completes(self):
        trace = execute_traced(SIMPLE_SOURCE)

        assert isinstance(trace, ExecutionTrace)
        assert trace.summary.reason == TerminationReason.COMPLETED
        assert trace.summary.total_steps == len(trace.steps) == 1
        assert trace.steps[0].variables == {"x": {"kind": "scalar", "value": 42}}

    def test_entry_point_with_arguments(self):
        source = "def double(n):\n    return n * 2\n"

        trace = execute_traced(source, entry_point="double", arguments=[21])

        assert trace.summary.return_value == {"kind": "scalar", "value": 42}

    def test_inputs_are_bound_as_globals(self):
        trace = execute_traced("y = x + 1\n", inputs={"x": 1})

        assert trace.steps[-1].variables["y"] == {"kind": "scalar", "value": 2}


CLASS_WITH_METHOD_SOURCE = """\
class Greeter:
    def hello(self, name):
        return "Hello, " + name
"""

JS_FUNCTION_SOURCE = """\
function add(a, b) {
    return a + b;
}
"""


class TestExtractFunctionSource:
    def test_top_level_function(self):
        result = extract_function_source(FUNCTION_SOURCE, "greet")
        assert "def greet(name):" in result
        assert "return name" in result

    def test_class_method(self):
        result = extract_function_source(CLASS_WITH_METHOD_SOURCE, "hello")
        assert result.startswith("def hello(self, name):")

    def test_not_found_raises_value_error(self):
        with pytest.raises(ValueError, match="not found"):
            extract_function_source(SIMPLE_SOURCE, "nonexistent")

    def test_non_python_language(self):
        result = extract_function_source(JS_FUNCTION_SOURCE, "add", language="javascript")
        assert "function add(a, b)" in result


class TestCompositionHierarchy:
    """Verify that functions compose correctly — dump_ir uses lower_source, etc."""

    def test_dump_ir_matches_lower_source(self):
        ir_text = dump_ir(SIMPLE_SOURCE)
        for inst in lower_source(SIMPLE_SOURCE):
            assert str(inst) in ir_text

    def test_dump_cfg_matches_build_cfg(self):
        assert dump_cfg(SIMPLE_SOURCE) == str(build_cfg_from_source(SIMPLE_SOURCE))
