"""Security policy — static admission checks on guest source.

Runs before any lowering or execution.  A guest program that fails is
never run; the caller receives every violation found, each with a
position, so the author can fix them in one pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .ir import IRInstruction, Opcode
from .parser import find_syntax_problems, parse_source
from . import constants

logger = logging.getLogger(__name__)

MAX_VIOLATIONS = 20

# Node types denied outright, per language.
_DENIED_NODES: dict[str, dict[str, str]] = {
    "python": {
        "import_statement": "imports are not allowed",
        "import_from_statement": "imports are not allowed",
        "future_import_statement": "imports are not allowed",
        "global_statement": "'global' is not allowed",
        "nonlocal_statement": "'nonlocal' is not allowed",
        "with_statement": "'with' is not allowed",
        "lambda": "lambda expressions are not allowed",
        "yield": "generators are not allowed",
        "await": "async code is not allowed",
        "try_statement": "'try' is not allowed",
        "decorator": "decorators are not allowed",
        "exec_statement": "exec is not allowed",
        "print_statement": "Python 2 print statements are not allowed",
    },
    "javascript": {
        "import_statement": "imports are not allowed",
        "export_statement": "exports are not allowed",
        "with_statement": "'with' is not allowed",
        "arrow_function": "arrow functions are not allowed",
        "function_expression": "function expressions are not allowed",
        "function": "function expressions are not allowed",
        "generator_function_declaration": "generators are not allowed",
        "generator_function": "generators are not allowed",
        "yield_expression": "generators are not allowed",
        "await_expression": "async code is not allowed",
        "try_statement": "'try' is not allowed",
        "debugger_statement": "'debugger' is not allowed",
        "meta_property": "'new.target' and 'import.meta' are not allowed",
    },
}

# Names that reach the host: I/O, reflection and dynamic evaluation.
_DENIED_NAMES: dict[str, frozenset[str]] = {
    "python": frozenset(
        {
            "open",
            "eval",
            "exec",
            "compile",
            "input",
            "getattr",
            "setattr",
            "delattr",
            "hasattr",
            "globals",
            "locals",
            "vars",
            "dir",
            "type",
            "super",
            "breakpoint",
            "exit",
            "quit",
            "help",
            "memoryview",
        }
    ),
    "javascript": frozenset(
        {
            "eval",
            "Function",
            "require",
            "module",
            "exports",
            "process",
            "globalThis",
            "window",
            "document",
            "fetch",
            "XMLHttpRequest",
            "setTimeout",
            "setInterval",
            "Proxy",
            "Reflect",
            "WebAssembly",
            "prompt",
        }
    ),
}

_FUNCTION_NODES: dict[str, frozenset[str]] = {
    "python": frozenset({"function_definition"}),
    "javascript": frozenset({"function_declaration", "method_definition"}),
}

_IDENTIFIER_NODES = frozenset({"identifier", "property_identifier"})
# __init__ is how guest classes declare constructors
_ALLOWED_DUNDERS = frozenset({"__init__"})


@dataclass(frozen=True)
class Violation:
    line: int
    column: int
    message: str

    def __str__(self) -> str:
        return f"line {self.line}:{self.column}: {self.message}"


def check_source(
    source: str,
    language: str,
    *,
    max_source_bytes: int = constants.DEFAULT_MAX_SOURCE_BYTES,
) -> list[Violation]:
    """Return every policy violation in *source*; empty means admissible."""
    if language not in constants.SUPPORTED_LANGUAGES:
        return [Violation(0, 0, f"unsupported language: {language!r}")]
    encoded = source.encode("utf-8")
    if len(encoded) > max_source_bytes:
        return [
            Violation(0, 0, f"source is {len(encoded)} bytes; the limit is {max_source_bytes}")
        ]
    tree = parse_source(source, language)
    problems = find_syntax_problems(tree, encoded)
    if problems:
        return [Violation(p.line, p.column, f"syntax error near {p.text!r}") for p in problems]
    violations = _walk(tree.root_node, language, encoded)
    logger.debug("Policy check (%s): %d violation(s)", language, len(violations))
    return violations


def check_lowered(instructions: list[IRInstruction]) -> list[Violation]:
    """Flag constructs the frontend could not represent."""
    violations = []
    for inst in instructions:
        if inst.opcode != Opcode.UNSUPPORTED:
            continue
        what = str(inst.operands[0]).removeprefix(constants.UNSUPPORTED_PREFIX)
        loc = inst.source_location
        violations.append(
            Violation(loc.start_line, loc.start_col, f"unsupported construct: {what}")
        )
        if len(violations) >= MAX_VIOLATIONS:
            break
    return violations


def _walk(root, language: str, source: bytes) -> list[Violation]:
    denied_nodes = _DENIED_NODES[language]
    denied_names = _DENIED_NAMES[language]
    function_nodes = _FUNCTION_NODES[language]
    violations: list[Violation] = []

    # (node, enclosing function count)
    stack = [(root, 0)]
    while stack and len(violations) < MAX_VIOLATIONS:
        node, fn_depth = stack.pop()
        line, column = node.start_point[0] + 1, node.start_point[1]
        if node.is_named and node.type in denied_nodes:
            violations.append(Violation(line, column, denied_nodes[node.type]))
            continue
        if node.type in function_nodes and fn_depth > 0:
            violations.append(Violation(line, column, "nested functions are not allowed"))
            continue
        if language == "python" and node.type == "function_definition":
            if any(c.type == "async" for c in node.children):
                violations.append(Violation(line, column, "async code is not allowed"))
                continue
        if node.type in _IDENTIFIER_NODES:
            name = source[node.start_byte : node.end_byte].decode("utf-8")
            message = _check_name(node, name, denied_names)
            if message:
                violations.append(Violation(line, column, message))
        if node.type in function_nodes:
            fn_depth += 1
        stack.extend((child, fn_depth) for child in reversed(node.children))
    violations.sort(key=lambda v: (v.line, v.column))
    return violations


def _check_name(node, name: str, denied_names: frozenset[str]) -> str | None:
    if name.startswith(constants.INTERNAL_NAME_PREFIX) and name not in _ALLOWED_DUNDERS:
        return f"names starting with '{constants.INTERNAL_NAME_PREFIX}' are reserved: {name}"
    if node.type == "identifier" and name in denied_names and not _is_member_name(node):
        return f"'{name}' is not available in the sandbox"
    return None


def _is_member_name(node) -> bool:
    """True for the ``x`` in ``obj.x``, which never names a global."""
    parent = node.parent
    if parent is None or parent.type not in ("attribute", "member_expression"):
        return False
    member = parent.child_by_field_name("attribute") or parent.child_by_field_name("property")
    return member is not None and member.start_byte == node.start_byte
