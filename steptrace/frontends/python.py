"""PythonFrontend — tree-sitter Python AST → IR lowering."""

from __future__ import annotations

from typing import Callable

from ._base import BaseFrontend
from ..ir import Opcode
from .. import constants


class PythonFrontend(BaseFrontend):
    """Lowers a Python tree-sitter AST into flattened TAC IR."""

    NONE_LITERAL = "None"
    TRUE_LITERAL = "True"
    FALSE_LITERAL = "False"
    DEFAULT_RETURN_VALUE = "None"

    ATTRIBUTE_NODE_TYPE = "attribute"
    SUBSCRIPT_NODE_TYPE = "subscript"

    SUBSCRIPT_VALUE_FIELD = "value"
    SUBSCRIPT_INDEX_FIELD = "subscript"

    COMMENT_TYPES = frozenset({"comment"})
    NOISE_TYPES = frozenset({"newline", "\n"})

    # Literal kinds accepted as parameter defaults.
    LITERAL_DEFAULT_TYPES = frozenset(
        {"integer", "float", "string", "true", "false", "none"}
    )

    def __init__(self):
        super().__init__()
        self._EXPR_DISPATCH: dict[str, Callable] = {
            "identifier": self._lower_identifier,
            "integer": self._lower_const_literal,
            "float": self._lower_const_literal,
            "string": self._lower_string,
            "concatenated_string": self._lower_concatenated_string,
            "true": self._lower_const_literal,
            "false": self._lower_const_literal,
            "none": self._lower_const_literal,
            "binary_operator": self._lower_binop,
            "boolean_operator": self._lower_binop,
            "comparison_operator": self._lower_comparison,
            "unary_operator": self._lower_unop,
            "not_operator": self._lower_unop,
            "call": self._lower_call,
            "attribute": self._lower_attribute,
            "subscript": self._lower_python_subscript,
            "parenthesized_expression": self._lower_paren,
            "list": self._lower_list_literal,
            "dictionary": self._lower_dict_literal,
            "set": self._lower_set_literal,
            "tuple": self._lower_tuple_literal,
            "expression_list": self._lower_tuple_literal,
            "conditional_expression": self._lower_conditional_expr,
            "list_comprehension": self._lower_comprehension,
            "set_comprehension": self._lower_comprehension,
            "generator_expression": self._lower_comprehension,
            "dictionary_comprehension": self._lower_comprehension,
        }
        self._STMT_DISPATCH: dict[str, Callable] = {
            "expression_statement": self._lower_expression_statement,
            "assignment": self._lower_assignment,
            "augmented_assignment": self._lower_augmented_assignment,
            "return_statement": self._lower_return,
            "if_statement": self._lower_if,
            "while_statement": self._lower_python_while,
            "for_statement": self._lower_for,
            "function_definition": self._lower_function_def,
            "class_definition": self._lower_python_class_def,
            "raise_statement": self._lower_raise,
            "assert_statement": self._lower_assert,
            "break_statement": self._lower_break,
            "continue_statement": self._lower_continue,
            "pass_statement": lambda _: None,
        }

    # ── Python-specific call lowering ────────────────────────────

    def _lower_call(self, node) -> str:
        func_node = node.child_by_field_name("function")
        args_node = node.child_by_field_name("arguments")
        if args_node is not None and args_node.type == "generator_expression":
            # sum(x for x in xs): the generator is the single argument
            if func_node is None or func_node.type != "identifier":
                return self._lower_unsupported(node, "generator_call")
            arg_reg = self._lower_comprehension(args_node)
            reg = self._fresh_reg()
            self._emit(
                Opcode.CALL_FUNCTION,
                result_reg=reg,
                operands=[self._node_text(func_node), arg_reg],
                node=node,
            )
            return reg
        return self._lower_call_impl(func_node, args_node, node)

    def _extract_call_args(self, args_node) -> list[str]:
        if args_node is None:
            return []
        regs = []
        for c in args_node.children:
            if not c.is_named or c.type in self.COMMENT_TYPES:
                continue
            if c.type in ("keyword_argument", "list_splat", "dictionary_splat"):
                regs.append(self._lower_unsupported(c))
                continue
            regs.append(self._lower_expr(c))
        return regs

    # ── Python-specific: strings ─────────────────────────────────

    def _is_fstring(self, node) -> bool:
        start = next((c for c in node.children if c.type == "string_start"), None)
        return start is not None and "f" in self._node_text(start).lower()

    def _lower_string(self, node) -> str:
        if not self._is_fstring(node):
            return self._lower_const_literal(node)
        return self._lower_fstring(node)

    def _lower_concatenated_string(self, node) -> str:
        parts = [c for c in node.children if c.type == "string"]
        if not any(self._is_fstring(p) for p in parts):
            return self._lower_const_literal(node)
        return self._concat_parts([self._lower_string(p) for p in parts], node)

    def _lower_fstring(self, node) -> str:
        end = next(c for c in node.children if c.type == "string_end")
        quote = self._node_text(end)
        parts: list[str] = []
        for child in node.children:
            if child.type == "string_content":
                raw = self._node_text(child).replace("{{", "{").replace("}}", "}")
                parts.append(self._emit_const(f"{quote}{raw}{quote}"))
            elif child.type == "interpolation":
                parts.append(self._lower_interpolation(child))
        if not parts:
            return self._emit_const("''", node=node)
        return self._concat_parts(parts, node)

    def _lower_interpolation(self, node) -> str:
        expr = node.child_by_field_name("expression")
        spec = next((c for c in node.children if c.type == "format_specifier"), None)
        if expr is None:
            return self._lower_unsupported(node)
        val_reg = self._lower_expr(expr)
        reg = self._fresh_reg()
        if spec is not None:
            if any(c.type == "interpolation" for c in spec.children):
                return self._lower_unsupported(spec, "nested_format_spec")
            spec_reg = self._emit_const(repr(self._node_text(spec).lstrip(":")))
            self._emit(Opcode.CALL_FUNCTION, result_reg=reg, operands=["format", val_reg, spec_reg])
            return reg
        self._emit(Opcode.CALL_FUNCTION, result_reg=reg, operands=["str", val_reg])
        return reg

    def _concat_parts(self, parts: list[str], node) -> str:
        result = parts[0]
        if len(parts) == 1:
            reg = self._fresh_reg()
            self._emit(Opcode.CALL_FUNCTION, result_reg=reg, operands=["str", result])
            return reg
        for part in parts[1:]:
            new_reg = self._fresh_reg()
            self._emit(Opcode.BINOP, result_reg=new_reg, operands=["+", result, part])
            result = new_reg
        return result

    # ── Python-specific: comparisons ─────────────────────────────

    def _lower_comparison(self, node) -> str:
        """Lower ``a < b`` and chained forms such as ``a < b <= c``."""
        operands = [c for c in node.children if c.is_named and c.type not in self.COMMENT_TYPES]
        operators = [
            " ".join(self._node_text(c).split())
            for c in node.children
            if not c.is_named
        ]

        def pair_from(i: int, lhs_reg: str) -> str:
            rhs_reg = self._lower_expr(operands[i + 1])
            cmp_reg = self._fresh_reg()
            self._emit(
                Opcode.BINOP,
                result_reg=cmp_reg,
                operands=[operators[i], lhs_reg, rhs_reg],
                node=node,
            )
            if i + 1 == len(operators):
                return cmp_reg
            return self._lower_short_circuit(
                "and", lambda: cmp_reg, lambda: pair_from(i + 1, rhs_reg)
            )

        return pair_from(0, self._lower_expr(operands[0]))

    # ── Python-specific: subscripts and slices ───────────────────

    def _lower_python_subscript(self, node) -> str:
        idx_node = node.child_by_field_name(self.SUBSCRIPT_INDEX_FIELD)
        if idx_node is not None and idx_node.type == "slice":
            obj_reg = self._lower_expr(node.child_by_field_name(self.SUBSCRIPT_VALUE_FIELD))
            return self._lower_slice(obj_reg, idx_node)
        return self._lower_subscript(node)

    def _lower_slice(self, obj_reg: str, slice_node) -> str:
        bounds: list = [None, None, None]
        slot = 0
        for child in slice_node.children:
            if child.type == ":":
                slot += 1
            elif child.is_named:
                bounds[slot] = child
        regs = [
            self._lower_expr(b) if b is not None else self._emit_const(self.NONE_LITERAL)
            for b in bounds
        ]
        reg = self._fresh_reg()
        self._emit(
            Opcode.CALL_FUNCTION,
            result_reg=reg,
            operands=[constants.SLICE_BUILTIN, obj_reg] + regs,
            node=slice_node,
        )
        return reg

    # ── Python-specific: if / elif / else ────────────────────────

    def _lower_if(self, node):
        clauses = [(node.child_by_field_name("condition"), node.child_by_field_name("consequence"), node)]
        else_body = None
        for alt in node.children_by_field_name("alternative"):
            if alt.type == "elif_clause":
                clauses.append(
                    (alt.child_by_field_name("condition"), alt.child_by_field_name("consequence"), alt)
                )
            elif alt.type == "else_clause":
                else_body = alt.child_by_field_name("body")

        end_label = self._fresh_label("if_end")
        for i, (cond_node, body_node, clause) in enumerate(clauses):
            is_last = i + 1 == len(clauses)
            cond_reg = self._lower_expr(cond_node)
            true_label = self._fresh_label("if_true")
            false_label = (
                end_label if is_last and else_body is None else self._fresh_label("if_false")
            )
            self._emit(
                Opcode.BRANCH_IF,
                operands=[cond_reg],
                label=f"{true_label},{false_label}",
                node=clause,
            )
            self._emit(Opcode.LABEL, label=true_label)
            self._lower_block(body_node)
            self._emit(Opcode.BRANCH, label=end_label)
            if false_label != end_label:
                self._emit(Opcode.LABEL, label=false_label)

        if else_body is not None:
            self._lower_block(else_body)
            self._emit(Opcode.BRANCH, label=end_label)
        self._emit(Opcode.LABEL, label=end_label)

    # ── Python-specific: loops ───────────────────────────────────

    def _lower_python_while(self, node):
        if node.child_by_field_name("alternative") is not None:
            self._lower_unsupported(node, "while_else")
            return
        self._lower_while(node)

    def _lower_for(self, node):
        left = node.child_by_field_name("left")
        right = node.child_by_field_name("right")
        body_node = node.child_by_field_name("body")
        if node.child_by_field_name("alternative") is not None:
            self._lower_unsupported(node, "for_else")
            return

        iter_reg = self._lower_expr(right)
        self._lower_for_each(
            iter_reg,
            lambda elem_reg: self._lower_store_target(left, elem_reg, None),
            lambda: self._lower_block(body_node),
            node,
            self._collect_identifiers(left),
        )

    # ── Python-specific: comprehensions ──────────────────────────

    def _lower_comprehension(self, node) -> str:
        """Lower a comprehension into hidden loops that fill a fresh container."""
        is_dict = node.type == "dictionary_comprehension"
        result_reg = self._fresh_reg()
        if is_dict:
            self._emit(Opcode.NEW_OBJECT, result_reg=result_reg, operands=["dict"], node=node)
        else:
            kind = "set" if node.type == "set_comprehension" else "list"
            self._emit(
                Opcode.NEW_ARRAY,
                result_reg=result_reg,
                operands=[kind, self._emit_const("0")],
                node=node,
            )
        body = node.child_by_field_name("body")
        clauses = [
            c for c in node.children if c.type in ("for_in_clause", "if_clause")
        ]

        def produce():
            if is_dict:
                key_reg = self._lower_expr(body.child_by_field_name("key"))
                val_reg = self._lower_expr(body.child_by_field_name("value"))
                self._emit(Opcode.STORE_INDEX, operands=[result_reg, key_reg, val_reg])
                return
            val_reg = self._lower_expr(body)
            method = "add" if node.type == "set_comprehension" else "append"
            self._emit(
                Opcode.CALL_METHOD,
                result_reg=self._fresh_reg(),
                operands=[result_reg, method, val_reg],
            )

        def nest(i: int):
            if i == len(clauses):
                produce()
                return
            clause = clauses[i]
            if clause.type == "if_clause":
                cond = next(c for c in clause.children if c.is_named)
                cond_reg = self._lower_expr(cond)
                keep_label = self._fresh_label("comp_keep")
                skip_label = self._fresh_label("comp_skip")
                self._emit(
                    Opcode.BRANCH_IF,
                    operands=[cond_reg],
                    label=f"{keep_label},{skip_label}",
                )
                self._emit(Opcode.LABEL, label=keep_label)
                nest(i + 1)
                self._emit(Opcode.BRANCH, label=skip_label)
                self._emit(Opcode.LABEL, label=skip_label)
                return
            left = clause.child_by_field_name("left")
            right = clause.child_by_field_name("right")
            iter_reg = self._lower_expr(right)
            self._lower_for_each(
                iter_reg,
                lambda elem_reg: self._lower_store_target(left, elem_reg, None),
                lambda: nest(i + 1),
                clause,
                [],
                observe=False,
            )

        nest(0)
        return result_reg

    # ── Python-specific: parameters ──────────────────────────────

    def _lower_param(self, child):
        if child.type in ("(", ")", ",", ":"):
            return

        default_text = None
        if child.type == "identifier":
            pname = self._node_text(child)
        elif child.type == "typed_parameter":
            id_node = next(
                (sub for sub in child.children if sub.type == "identifier"),
                None,
            )
            if id_node is None:
                self._lower_unsupported(child, "parameter")
                return
            pname = self._node_text(id_node)
        elif child.type in ("default_parameter", "typed_default_parameter"):
            pname_node = child.child_by_field_name("name")
            value_node = child.child_by_field_name("value")
            if pname_node is None or value_node is None:
                self._lower_unsupported(child, "parameter")
                return
            if value_node.type not in self.LITERAL_DEFAULT_TYPES and not (
                value_node.type == "unary_operator"
                and self._node_text(value_node).lstrip("-+").strip().replace(".", "", 1).isdigit()
            ):
                self._lower_unsupported(value_node, "non_literal_default")
                return
            pname = self._node_text(pname_node)
            default_text = self._node_text(value_node)
        else:
            self._lower_unsupported(child, f"parameter:{child.type}")
            return

        self._emit_param(pname, default_text, child)

    # ── Python-specific: classes ─────────────────────────────────

    def _lower_python_class_def(self, node):
        supers = node.child_by_field_name("superclasses")
        if supers is not None:
            bases = [self._node_text(c) for c in supers.children if c.is_named]
            if any(b != "object" for b in bases):
                self._lower_unsupported(supers, "inheritance")
                return
        self._lower_class_def(node)

    def _lower_class_body(self, body_node):
        for child in body_node.children:
            if not child.is_named or child.type in self.COMMENT_TYPES:
                continue
            if child.type == "function_definition":
                self._lower_function_def(child)
            elif child.type == "pass_statement":
                continue
            elif child.type == "expression_statement" and all(
                c.type == "string" for c in child.children if c.is_named
            ):
                # docstring
                continue
            else:
                self._lower_unsupported(child, "class_attribute")

    # ── Python-specific: raise / assert ──────────────────────────

    def _lower_raise(self, node):
        self._lower_raise_or_throw(node, keyword="raise")

    def _lower_assert(self, node):
        exprs = [c for c in node.children if c.is_named]
        cond_reg = self._lower_expr(exprs[0])
        ok_label = self._fresh_label("assert_ok")
        fail_label = self._fresh_label("assert_fail")
        self._emit(
            Opcode.BRANCH_IF,
            operands=[cond_reg],
            label=f"{ok_label},{fail_label}",
            node=node,
        )
        self._emit(Opcode.LABEL, label=fail_label)
        args = [self._lower_expr(exprs[1])] if len(exprs) > 1 else []
        exc_reg = self._fresh_reg()
        self._emit(
            Opcode.CALL_FUNCTION,
            result_reg=exc_reg,
            operands=["AssertionError"] + args,
        )
        self._emit(Opcode.THROW, operands=[exc_reg], node=node)
        self._emit(Opcode.LABEL, label=ok_label)

    # ── Python-specific: literals ────────────────────────────────

    def _lower_tuple_literal(self, node) -> str:
        elems = [c for c in node.children if c.is_named and c.type not in self.COMMENT_TYPES]
        return self._lower_sequence_literal(elems, "tuple", node)

    def _lower_set_literal(self, node) -> str:
        arr_reg = self._fresh_reg()
        self._emit(
            Opcode.NEW_ARRAY,
            result_reg=arr_reg,
            operands=["set", self._emit_const("0")],
            node=node,
        )
        for elem in (c for c in node.children if c.is_named and c.type not in self.COMMENT_TYPES):
            val_reg = self._lower_expr(elem)
            self._emit(
                Opcode.CALL_METHOD,
                result_reg=self._fresh_reg(),
                operands=[arr_reg, "add", val_reg],
            )
        return arr_reg

    def _lower_dict_literal(self, node) -> str:
        pairs = []
        for child in node.children:
            if child.type == "pair":
                pairs.append((child.child_by_field_name("key"), child.child_by_field_name("value")))
            elif child.type == "dictionary_splat":
                self._lower_unsupported(child)
        return self._lower_map_literal(pairs, node)

    # ── Python-specific: conditional expression ──────────────────

    def _lower_conditional_expr(self, node) -> str:
        children = [c for c in node.children if c.type not in ("if", "else")]
        true_expr = children[0]
        cond_expr = children[1]
        false_expr = children[2]

        cond_reg = self._lower_expr(cond_expr)
        true_label = self._fresh_label("ternary_true")
        false_label = self._fresh_label("ternary_false")
        end_label = self._fresh_label("ternary_end")
        result_var = self._fresh_internal_name(constants.TERNARY_PREFIX)

        self._emit(
            Opcode.BRANCH_IF,
            operands=[cond_reg],
            label=f"{true_label},{false_label}",
            node=node,
        )

        self._emit(Opcode.LABEL, label=true_label)
        true_reg = self._lower_expr(true_expr)
        self._emit(Opcode.STORE_VAR, operands=[result_var, true_reg])
        self._emit(Opcode.BRANCH, label=end_label)

        self._emit(Opcode.LABEL, label=false_label)
        false_reg = self._lower_expr(false_expr)
        self._emit(Opcode.STORE_VAR, operands=[result_var, false_reg])
        self._emit(Opcode.BRANCH, label=end_label)

        self._emit(Opcode.LABEL, label=end_label)
        result_reg = self._fresh_reg()
        self._emit(Opcode.LOAD_VAR, result_reg=result_reg, operands=[result_var])
        return result_reg

    # ── Python-specific: tuple unpack ────────────────────────────

    def _lower_store_target(self, target, val_reg: str, parent_node):
        if target.type in ("pattern_list", "tuple_pattern", "list_pattern"):
            self._lower_tuple_unpack(target, val_reg, parent_node)
            return
        if target.type == "parenthesized_expression":
            inner = next(c for c in target.children if c.is_named)
            self._lower_store_target(inner, val_reg, parent_node)
            return
        super()._lower_store_target(target, val_reg, parent_node)

    def _lower_tuple_unpack(self, target, val_reg: str, parent_node):
        for i, child in enumerate(c for c in target.children if c.is_named):
            idx_reg = self._emit_const(str(i))
            elem_reg = self._fresh_reg()
            self._emit(
                Opcode.LOAD_INDEX,
                result_reg=elem_reg,
                operands=[val_reg, idx_reg],
            )
            self._lower_store_target(child, elem_reg, parent_node)
