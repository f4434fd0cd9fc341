"""Tests for the static security policy on guest source."""

import pytest

from steptrace.errors import SecurityPolicyError
from steptrace.ir import IRInstruction, Opcode, SourceLocation
from steptrace.policy import MAX_VIOLATIONS, Violation, check_lowered, check_source
from steptrace.program import compile_program


def _messages(source: str, language: str = "python") -> list[str]:
    return [v.message for v in check_source(source, language)]


class TestPythonPolicy:
    def test_plain_program_is_admissible(self):
        source = """\
class Stack(object):
    def __init__(self):
        self.items = []

    def push(self, x):
        self.items.append(x)

def total(xs):
    s = 0
    for x in xs:
        s += x
    return s
"""
        assert check_source(source, "python") == []

    @pytest.mark.parametrize(
        "source",
        [
            "import os\n",
            "from os import path\n",
            "f = lambda x: x\n",
            "with f() as g:\n    pass\n",
            "try:\n    x = 1\nexcept Exception:\n    pass\n",
        ],
    )
    def test_denied_constructs(self, source):
        assert check_source(source, "python") != []

    @pytest.mark.parametrize("name", ["open", "eval", "exec", "getattr", "globals", "type"])
    def test_denied_builtins(self, name):
        messages = _messages(f"x = {name}('a')\n")

        assert messages == [f"'{name}' is not available in the sandbox"]

    def test_attribute_named_like_denied_builtin_is_allowed(self):
        assert check_source("d = {}\nx = d.type\n", "python") == []

    def test_reserved_dunder_names(self):
        messages = _messages("__x = 1\n")

        assert len(messages) == 1
        assert "reserved" in messages[0]

    def test_nested_function_rejected(self):
        source = "def outer():\n    def inner():\n        return 1\n    return inner()\n"
        violations = check_source(source, "python")

        assert [v.message for v in violations] == ["nested functions are not allowed"]
        assert violations[0].line == 2

    def test_async_function_rejected(self):
        assert "async code is not allowed" in _messages("async def f():\n    return 1\n")

    def test_generator_rejected(self):
        assert "generators are not allowed" in _messages("def g():\n    yield 1\n")

    def test_violations_are_positioned_and_sorted(self):
        violations = check_source("x = 1\nimport os\ny = eval('1')\n", "python")

        assert [(v.line, v.column) for v in violations] == [(2, 0), (3, 4)]

    def test_violation_cap(self):
        source = "".join(f"import m{i}\n" for i in range(MAX_VIOLATIONS + 5))

        assert len(check_source(source, "python")) == MAX_VIOLATIONS

    def test_syntax_error_reported(self):
        violations = check_source("def f(:\n", "python")

        assert violations
        assert all("syntax error" in v.message for v in violations)


class TestJavaScriptPolicy:
    def test_plain_program_is_admissible(self):
        source = """\
class Counter {
  constructor() { this.n = 0; }
  inc() { this.n += 1; }
}
function sum(xs) {
  let s = 0;
  for (const x of xs) { s += x; }
  return s;
}
console.log(sum([1, 2]));
"""
        assert check_source(source, "javascript") == []

    @pytest.mark.parametrize(
        "source",
        [
            "const f = (x) => x;\n",
            "const f = function (x) { return x; };\n",
            "const fs = require('fs');\n",
            "eval('1');\n",
            "process.exit(1);\n",
            "function* g() { yield 1; }\n",
        ],
    )
    def test_denied_constructs(self, source):
        assert check_source(source, "javascript") != []

    def test_member_named_like_denied_global_is_allowed(self):
        assert check_source("const o = {};\nconst p = o.process;\n", "javascript") == []


class TestLimits:
    def test_unsupported_language(self):
        violations = check_source("x = 1", "cobol")

        assert violations == [Violation(0, 0, "unsupported language: 'cobol'")]

    def test_source_size_limit(self):
        violations = check_source("x = 1\n" * 100, "python", max_source_bytes=50)

        assert len(violations) == 1
        assert "limit is 50" in violations[0].message


class TestLowered:
    def test_unsupported_instructions_reported(self):
        instructions = [
            IRInstruction(opcode=Opcode.LABEL, label="entry"),
            IRInstruction(
                opcode=Opcode.UNSUPPORTED,
                operands=["unsupported:for_else"],
                source_location=SourceLocation(start_line=3, start_col=2, end_line=4, end_col=0),
            ),
        ]

        assert check_lowered(instructions) == [
            Violation(3, 2, "unsupported construct: for_else")
        ]

    def test_compile_program_rejects_unsupported_construct(self):
        with pytest.raises(SecurityPolicyError) as exc_info:
            compile_program("for x in [1]:\n    pass\nelse:\n    pass\n")

        assert "for_else" in exc_info.value.violations[0].message


class TestCompileProgram:
    def test_compiles_admissible_source(self):
        program = compile_program("def f(a):\n    return a\n")

        assert program.language == "python"
        assert "f" in program.registry.functions
        assert program.stats.ir_instruction_count == len(program.instructions)
        assert program.stats.source_lines == 2

    def test_policy_violation_lists_every_problem(self):
        with pytest.raises(SecurityPolicyError) as exc_info:
            compile_program("import os\nopen('x')\n")

        assert len(exc_info.value.violations) == 2
