"""Tree-Sitter Parsing Layer."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


class ParserFactory(ABC):
    """Abstract factory for obtaining a language parser."""

    @abstractmethod
    def get_parser(self, language: str): ...


class TreeSitterParserFactory(ParserFactory):
    """Concrete factory that delegates to tree-sitter-language-pack."""

    def get_parser(self, language: str):
        import tree_sitter_language_pack as tslp

        return tslp.get_parser(language)


class Parser:
    """Thin wrapper around a parser factory."""

    def __init__(self, parser_factory: ParserFactory):
        self._factory = parser_factory

    def parse(self, source: str, language: str):
        parser = self._factory.get_parser(language)
        return parser.parse(source.encode("utf-8"))


def parse_source(source: str, language: str):
    """Parse *source* with the default tree-sitter factory."""
    return Parser(TreeSitterParserFactory()).parse(source, language)


@dataclass(frozen=True)
class SyntaxProblem:
    line: int
    column: int
    text: str


def find_syntax_problems(tree, source: bytes, limit: int = 10) -> list[SyntaxProblem]:
    """Collect ERROR / MISSING nodes, depth-first, up to *limit* entries."""
    problems: list[SyntaxProblem] = []
    if not tree.root_node.has_error:
        return problems
    stack = [tree.root_node]
    while stack and len(problems) < limit:
        node = stack.pop()
        if node.type == "ERROR" or node.is_missing:
            row, col = node.start_point
            snippet = source[node.start_byte : node.end_byte].decode(
                "utf-8", errors="replace"
            )
            problems.append(SyntaxProblem(line=row + 1, column=col, text=snippet[:40]))
            continue
        if node.has_error:
            stack.extend(reversed(node.children))
    return problems
