"""Frontend / AST-to-IR Lowering."""

from __future__ import annotations

from abc import ABC, abstractmethod

from .ir import IRInstruction


class Frontend(ABC):
    """Lowers a parsed guest program into flattened TAC IR."""

    @abstractmethod
    def lower(self, tree, source: bytes) -> list[IRInstruction]: ...


def get_frontend(language: str) -> Frontend:
    """Return the deterministic tree-sitter frontend for *language*.

    Raises ``ValueError`` for languages outside the supported guest subset.
    """
    from .frontends import get_deterministic_frontend

    return get_deterministic_frontend(language)
