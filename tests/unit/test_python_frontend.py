"""Tests for PythonFrontend — tree-sitter Python AST to IR lowering."""

from __future__ import annotations

from tree_sitter_language_pack import get_parser

from steptrace.frontends.python import PythonFrontend
from steptrace.ir import IRInstruction, Opcode


def _parse_python(source: str) -> list[IRInstruction]:
    parser = get_parser("python")
    tree = parser.parse(source.encode("utf-8"))
    frontend = PythonFrontend()
    return frontend.lower(tree, source.encode("utf-8"))


def _opcodes(instructions: list[IRInstruction]) -> list[Opcode]:
    return [inst.opcode for inst in instructions]


def _find_all(instructions: list[IRInstruction], opcode: Opcode) -> list[IRInstruction]:
    return [inst for inst in instructions if inst.opcode == opcode]


def _labels_in_order(instructions: list[IRInstruction]) -> list[str]:
    return [inst.label for inst in instructions if inst.opcode == Opcode.LABEL]


class TestPythonSmoke:
    def test_empty_program(self):
        instructions = _parse_python("")
        assert instructions[0].opcode == Opcode.LABEL
        assert instructions[0].label == "entry"

    def test_integer_literal(self):
        instructions = _parse_python("42")
        consts = _find_all(instructions, Opcode.CONST)
        assert any("42" in inst.operands for inst in consts)

    def test_string_literal(self):
        instructions = _parse_python('x = "hello"')
        consts = _find_all(instructions, Opcode.CONST)
        assert any('"hello"' in inst.operands for inst in consts)


class TestPythonVariables:
    def test_simple_assignment_is_located(self):
        instructions = _parse_python("x = 10")
        store = _find_all(instructions, Opcode.STORE_VAR)[0]

        assert store.operands[0] == "x"
        assert not store.is_synthetic
        assert store.source_location.start_line == 1

    def test_augmented_assignment(self):
        instructions = _parse_python("x = 1\nx += 2")
        binops = _find_all(instructions, Opcode.BINOP)

        assert binops[0].operands[0] == "+"
        assert len(_find_all(instructions, Opcode.STORE_VAR)) == 2

    def test_tuple_unpack_reads_by_index(self):
        instructions = _parse_python("a, b = b, a")
        stores = _find_all(instructions, Opcode.STORE_VAR)

        assert [s.operands[0] for s in stores] == ["a", "b"]
        assert len(_find_all(instructions, Opcode.LOAD_INDEX)) == 2


class TestPythonFunctions:
    def test_function_body_is_skipped_and_bound(self):
        instructions = _parse_python("def f(a, b=2):\n    return a + b\n")
        labels = _labels_in_order(instructions)

        assert any(lbl.startswith("func_f") for lbl in labels)
        assert instructions[1].opcode == Opcode.BRANCH
        ref = [c for c in _find_all(instructions, Opcode.CONST) if "<function:f@" in str(c.operands[0])]
        assert len(ref) == 1

    def test_params_are_located_and_carry_defaults(self):
        instructions = _parse_python("def f(a, b=2):\n    return a + b\n")
        params = _find_all(instructions, Opcode.PARAM)

        assert [p.operands for p in params] == [["param:a"], ["param:b", "2"]]
        assert all(not p.is_synthetic for p in params)

    def test_implicit_return_at_function_end(self):
        instructions = _parse_python("def f():\n    x = 1\n")
        returns = _find_all(instructions, Opcode.RETURN)

        assert len(returns) == 1
        assert returns[0].source_location.start_line == 2

    def test_call_emits_call_function(self):
        instructions = _parse_python("print(1, 2)")
        call = _find_all(instructions, Opcode.CALL_FUNCTION)[0]

        assert call.operands[0] == "print"
        assert len(call.operands) == 3

    def test_method_call(self):
        instructions = _parse_python("xs = []\nxs.append(1)")
        call = _find_all(instructions, Opcode.CALL_METHOD)[0]

        assert call.operands[1] == "append"


class TestPythonControlFlow:
    def test_if_else_branches(self):
        instructions = _parse_python("if x < 1:\n    y = 1\nelse:\n    y = 2\n")
        branch = _find_all(instructions, Opcode.BRANCH_IF)[0]

        assert not branch.is_synthetic
        assert "if_true" in branch.label

    def test_comparison_precedes_branch(self):
        instructions = _parse_python("if x < 1:\n    y = 1\n")
        i = _opcodes(instructions).index(Opcode.BRANCH_IF)

        assert instructions[i - 1].opcode == Opcode.BINOP
        assert instructions[i - 1].operands[0] == "<"
        assert instructions[i].operands == [instructions[i - 1].result_reg]

    def test_elif_chain(self):
        source = "if x == 1:\n    y = 1\nelif x == 2:\n    y = 2\nelse:\n    y = 3\n"
        assert len(_find_all(_parse_python(source), Opcode.BRANCH_IF)) == 2

    def test_while_emits_loop_iter(self):
        instructions = _parse_python("while i < n:\n    i += 1\n")
        loop_iters = _find_all(instructions, Opcode.LOOP_ITER)

        assert len(loop_iters) == 1
        assert loop_iters[0].operands[1:] == ["i", "n"]
        assert not loop_iters[0].is_synthetic

    def test_for_bookkeeping_is_synthetic(self):
        instructions = _parse_python("for x in xs:\n    pass\n")
        branch_ifs = _find_all(instructions, Opcode.BRANCH_IF)

        assert all(b.is_synthetic for b in branch_ifs)
        assert not _find_all(instructions, Opcode.LOOP_ITER)[0].is_synthetic

    def test_chained_comparison(self):
        instructions = _parse_python("ok = 1 < x <= 3")
        ops = [b.operands[0] for b in _find_all(instructions, Opcode.BINOP)]

        assert ops == ["<", "<="]

    def test_membership_is_comparison(self):
        instructions = _parse_python("ok = x not in xs")

        assert _find_all(instructions, Opcode.BINOP)[0].operands[0] == "not in"


class TestPythonCollections:
    def test_list_literal_builds_array(self):
        instructions = _parse_python("xs = [1, 2, 3]")
        new_array = _find_all(instructions, Opcode.NEW_ARRAY)[0]

        assert new_array.operands[0] == "list"
        stores = _find_all(instructions, Opcode.STORE_INDEX)
        assert len(stores) == 3
        assert all(s.is_synthetic for s in stores)

    def test_dict_literal_builds_map(self):
        instructions = _parse_python("d = {'a': 1}")

        assert _find_all(instructions, Opcode.NEW_OBJECT)[0].operands == ["dict"]

    def test_subscript_store_is_located(self):
        instructions = _parse_python("xs[0] = 5")
        store = _find_all(instructions, Opcode.STORE_INDEX)[0]

        assert not store.is_synthetic

    def test_slice_lowers_to_builtin(self):
        instructions = _parse_python("ys = xs[1:3]")
        call = _find_all(instructions, Opcode.CALL_FUNCTION)[0]

        assert call.operands[0] == "$slice"


class TestPythonClasses:
    def test_class_ref_and_methods(self):
        source = "class P:\n    def __init__(self, x):\n        self.x = x\n"
        instructions = _parse_python(source)
        consts = [str(c.operands[0]) for c in _find_all(instructions, Opcode.CONST)]

        assert any(c.startswith("<class:P@") for c in consts)
        assert any(c.startswith("<function:__init__@") for c in consts)
        assert _find_all(instructions, Opcode.STORE_FIELD)[0].operands[1] == "x"

    def test_inheritance_is_unsupported(self):
        instructions = _parse_python("class A(B):\n    pass\n")
        unsupported = _find_all(instructions, Opcode.UNSUPPORTED)

        assert unsupported[0].operands == ["unsupported:inheritance"]

    def test_object_base_is_allowed(self):
        instructions = _parse_python("class A(object):\n    pass\n")

        assert not _find_all(instructions, Opcode.UNSUPPORTED)


class TestPythonUnsupported:
    def test_for_else(self):
        instructions = _parse_python("for x in xs:\n    pass\nelse:\n    pass\n")

        assert _find_all(instructions, Opcode.UNSUPPORTED)[0].operands == ["unsupported:for_else"]
