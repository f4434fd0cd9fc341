"""Composable API functions for the trace engine pipelines.

Each function corresponds to a CLI workflow (--ir-only, --cfg-only, a full
traced run) but is callable programmatically without argparse.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from tree_sitter import Node

from .cfg import CFG, build_cfg
from .config import ResourceLimits, SessionConfig
from .frontend import get_frontend
from .ir import IRInstruction
from .parser import parse_source
from .session import Session
from .trace_types import ExecutionTrace

logger = logging.getLogger(__name__)

_FUNCTION_NODE_TYPES: frozenset[str] = frozenset(
    {
        "function_definition",
        "function_declaration",
        "method_definition",
    }
)


def lower_source(source: str, language: str = "python") -> list[IRInstruction]:
    """Parse and lower source code to IR instructions.

    No policy check runs here; use ``compile_program`` for guest code that
    is about to execute.
    """
    logger.info("Lowering source (%s)", language)
    frontend = get_frontend(language)
    tree = parse_source(source, language)
    return frontend.lower(tree, source.encode("utf-8"))


def dump_ir(source: str, language: str = "python") -> str:
    """Lower source to IR and return a text dump, one instruction per line."""
    instructions = lower_source(source, language)
    return "\n".join(f"  {inst}" for inst in instructions)


def build_cfg_from_source(source: str, language: str = "python") -> CFG:
    return build_cfg(lower_source(source, language))


def dump_cfg(source: str, language: str = "python") -> str:
    return str(build_cfg_from_source(source, language))


def execute_traced(
    source: str,
    language: str = "python",
    *,
    entry_point: str | None = None,
    arguments: list[Any] | tuple = (),
    inputs: dict[str, Any] | None = None,
    limits: ResourceLimits | None = None,
    seed: int = 0,
) -> ExecutionTrace:
    """Run *source* to a terminal state and return the sealed trace.

    Composes: compile_program → Session (worker thread, governor) → read
    back every committed Step.  Raises ``SecurityPolicyError`` for
    inadmissible programs.
    """
    config = SessionConfig(limits=limits or ResourceLimits(), seed=seed)
    logger.info("execute_traced: language=%s, entry_point=%s", language, entry_point)
    session = Session.create(
        source,
        language,
        config,
        entry_point=entry_point,
        arguments=arguments,
        inputs=inputs,
    )
    session.start()
    session.wait()
    store = session.store
    return ExecutionTrace(steps=list(store.range(0, len(store))), summary=store.summary)


def _find_function_node(node: Node, name: str) -> Optional[Node]:
    """Recursively walk the AST to find a function/method node matching *name*."""
    if node.type in _FUNCTION_NODE_TYPES:
        name_node = node.child_by_field_name("name")
        if name_node is not None and name_node.text.decode("utf-8") == name:
            return node

    return next(
        (
            found
            for child in node.children
            if (found := _find_function_node(child, name)) is not None
        ),
        None,
    )


def extract_function_source(
    source: str,
    function_name: str,
    language: str = "python",
) -> str:
    """Extract the raw source text of a named function from source code.

    Raises:
        ValueError: If no function with the given name is found.
    """
    logger.info("Extracting function source for '%s' (%s)", function_name, language)
    tree = parse_source(source, language)
    match = _find_function_node(tree.root_node, function_name)
    if match is None:
        raise ValueError(f"Function '{function_name}' not found in source")
    return source.encode("utf-8")[match.start_byte : match.end_byte].decode("utf-8")
