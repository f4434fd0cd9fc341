"""Tests for JavaScriptFrontend — tree-sitter JavaScript AST to IR lowering."""

from __future__ import annotations

from tree_sitter_language_pack import get_parser

from steptrace.frontends.javascript import JavaScriptFrontend
from steptrace.ir import IRInstruction, Opcode


def _parse_js(source: str) -> list[IRInstruction]:
    parser = get_parser("javascript")
    tree = parser.parse(source.encode("utf-8"))
    frontend = JavaScriptFrontend()
    return frontend.lower(tree, source.encode("utf-8"))


def _opcodes(instructions: list[IRInstruction]) -> list[Opcode]:
    return [inst.opcode for inst in instructions]


def _find_all(instructions: list[IRInstruction], opcode: Opcode) -> list[IRInstruction]:
    return [inst for inst in instructions if inst.opcode == opcode]


class TestJavaScriptDeclarations:
    def test_let_declaration(self):
        instructions = _parse_js("let x = 10;")
        store = _find_all(instructions, Opcode.STORE_VAR)[0]

        assert store.operands[0] == "x"
        assert not store.is_synthetic

    def test_uninitialised_declaration_is_synthetic(self):
        instructions = _parse_js("let x;")
        store = _find_all(instructions, Opcode.STORE_VAR)[0]

        assert store.is_synthetic
        assert _find_all(instructions, Opcode.CONST)[0].operands == ["undefined"]

    def test_array_destructuring(self):
        instructions = _parse_js("let [a, b] = [1, 2];")
        stores = _find_all(instructions, Opcode.STORE_VAR)

        assert [s.operands[0] for s in stores] == ["a", "b"]


class TestJavaScriptOperators:
    def test_strict_equality_normalised(self):
        instructions = _parse_js("let ok = a === b;")

        assert _find_all(instructions, Opcode.BINOP)[0].operands[0] == "=="

    def test_logical_and_short_circuits(self):
        instructions = _parse_js("let ok = a && b;")

        assert not _find_all(instructions, Opcode.BINOP)
        assert len(_find_all(instructions, Opcode.BRANCH_IF)) == 1

    def test_postfix_increment(self):
        instructions = _parse_js("i++;")
        binop = _find_all(instructions, Opcode.BINOP)[0]

        assert binop.operands[0] == "+"
        assert _find_all(instructions, Opcode.STORE_VAR)[0].operands[0] == "i"


class TestJavaScriptFunctions:
    def test_function_declarations_are_hoisted(self):
        instructions = _parse_js("f();\nfunction f() { return 1; }\n")
        ops = _opcodes(instructions)

        ref_store = next(
            i for i, inst in enumerate(instructions)
            if inst.opcode == Opcode.STORE_VAR and inst.operands[0] == "f"
        )
        assert ref_store < ops.index(Opcode.CALL_FUNCTION)

    def test_default_parameter(self):
        instructions = _parse_js("function f(a, b = 3) { return a + b; }")
        params = _find_all(instructions, Opcode.PARAM)

        assert [p.operands for p in params] == [["param:a"], ["param:b", "3"]]

    def test_implicit_return_is_undefined(self):
        instructions = _parse_js("function f() { }")
        ret = _find_all(instructions, Opcode.RETURN)[0]
        consts = {c.result_reg: c.operands[0] for c in _find_all(instructions, Opcode.CONST)}

        assert consts[ret.operands[0]] == "undefined"

    def test_console_log_lowers_to_print(self):
        instructions = _parse_js("console.log('a', 1);")
        call = _find_all(instructions, Opcode.CALL_FUNCTION)[0]

        assert call.operands[0] == "print"
        assert len(call.operands) == 3

    def test_math_namespace(self):
        instructions = _parse_js("let m = Math.max(1, 2);")

        assert _find_all(instructions, Opcode.CALL_FUNCTION)[0].operands[0] == "Math.max"


class TestJavaScriptControlFlow:
    def test_c_style_for(self):
        instructions = _parse_js("for (let i = 0; i < n; i++) { s += i; }")
        branch = _find_all(instructions, Opcode.BRANCH_IF)[0]
        loop_iter = _find_all(instructions, Opcode.LOOP_ITER)[0]

        assert not branch.is_synthetic
        assert loop_iter.operands[1:] == ["i"]

    def test_loop_control_is_the_updated_variable(self):
        instructions = _parse_js("for (let i = 0; i < a.length; i++) { s += a[i]; }")
        loop_iter = _find_all(instructions, Opcode.LOOP_ITER)[0]

        assert loop_iter.operands[1:] == ["i"]

    def test_loop_control_with_several_updates(self):
        instructions = _parse_js("for (let i = 0, j = 9; i < j; i++, j--) { }")
        loop_iter = _find_all(instructions, Opcode.LOOP_ITER)[0]

        assert loop_iter.operands[1:] == ["i", "j"]

    def test_loop_without_update_uses_condition_names(self):
        instructions = _parse_js("for (; k < n;) { k = k + 1; }")
        loop_iter = _find_all(instructions, Opcode.LOOP_ITER)[0]

        assert loop_iter.operands[1:] == ["k", "n"]

    def test_for_of_uses_for_each(self):
        instructions = _parse_js("for (const x of xs) { s += x; }")
        calls = [c.operands[0] for c in _find_all(instructions, Opcode.CALL_FUNCTION)]

        assert "$iter" in calls
        assert "Object.keys" not in calls

    def test_for_in_iterates_keys(self):
        instructions = _parse_js("for (const k in obj) { s += k; }")
        calls = [c.operands[0] for c in _find_all(instructions, Opcode.CALL_FUNCTION)]

        assert "Object.keys" in calls

    def test_do_while_tests_after_body(self):
        instructions = _parse_js("do { i++; } while (i < 3);")
        ops = _opcodes(instructions)

        assert ops.index(Opcode.LOOP_ITER) < ops.index(Opcode.BRANCH_IF)

    def test_switch_compares_each_case(self):
        source = "switch (x) { case 1: y = 1; break; case 2: y = 2; break; default: y = 0; }"
        instructions = _parse_js(source)

        assert len(_find_all(instructions, Opcode.BRANCH_IF)) == 2


class TestJavaScriptClasses:
    def test_methods_take_implicit_this(self):
        instructions = _parse_js("class C { constructor(v) { this.v = v; } }")
        params = [p.operands[0] for p in _find_all(instructions, Opcode.PARAM)]

        assert params == ["param:this", "param:v"]
        assert _find_all(instructions, Opcode.STORE_FIELD)[0].operands[1] == "v"

    def test_new_is_constructor_call(self):
        instructions = _parse_js("let c = new C(1);")

        assert _find_all(instructions, Opcode.CALL_FUNCTION)[0].operands[0] == "C"

    def test_extends_is_unsupported(self):
        instructions = _parse_js("class A extends B { }")

        assert _find_all(instructions, Opcode.UNSUPPORTED)[0].operands == [
            "unsupported:inheritance"
        ]

    def test_object_literal_builds_map(self):
        instructions = _parse_js("let o = {a: 1, b: 2};")

        assert _find_all(instructions, Opcode.NEW_OBJECT)[0].operands == ["dict"]
        assert len(_find_all(instructions, Opcode.STORE_INDEX)) == 2
