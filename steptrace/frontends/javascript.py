"""JavaScriptFrontend — tree-sitter JavaScript AST → IR lowering."""

from __future__ import annotations

from typing import Callable

from ._base import BaseFrontend
from ..ir import Opcode
from .. import constants

# Global objects whose members lower to builtins, e.g. Math.max(a, b) or Math.PI.
NAMESPACE_OBJECTS: frozenset[str] = frozenset(
    {"Math", "Object", "Array", "Number", "String", "Date"}
)


class JavaScriptFrontend(BaseFrontend):
    """Lowers a JavaScript tree-sitter AST into flattened TAC IR."""

    NONE_LITERAL = "undefined"
    TRUE_LITERAL = "true"
    FALSE_LITERAL = "false"
    DEFAULT_RETURN_VALUE = "undefined"

    ATTRIBUTE_NODE_TYPE = "member_expression"
    ATTR_OBJECT_FIELD = "object"
    ATTR_ATTRIBUTE_FIELD = "property"

    SUBSCRIPT_NODE_TYPE = "subscript_expression"
    SUBSCRIPT_VALUE_FIELD = "object"
    SUBSCRIPT_INDEX_FIELD = "index"

    IF_CONDITION_FIELD = "condition"
    IF_CONSEQUENCE_FIELD = "consequence"
    IF_ALTERNATIVE_FIELD = "alternative"

    COMMENT_TYPES = frozenset({"comment"})
    NOISE_TYPES = frozenset({"\n", "empty_statement"})

    LITERAL_DEFAULT_TYPES = frozenset(
        {"number", "string", "true", "false", "null", "undefined"}
    )

    OPERATOR_ALIASES = {
        "&&": "and",
        "||": "or",
        "!": "not",
        "===": "==",
        "!==": "!=",
    }

    def __init__(self):
        super().__init__()
        self._EXPR_DISPATCH: dict[str, Callable] = {
            "identifier": self._lower_identifier,
            "this": self._lower_identifier,
            "number": self._lower_const_literal,
            "string": self._lower_const_literal,
            "template_string": self._lower_template_string,
            "true": self._lower_const_literal,
            "false": self._lower_const_literal,
            "null": self._lower_const_literal,
            "undefined": self._lower_const_literal,
            "binary_expression": self._lower_binop,
            "augmented_assignment_expression": self._lower_augmented_assignment,
            "unary_expression": self._lower_js_unop,
            "update_expression": self._lower_update_expr,
            "call_expression": self._lower_call,
            "new_expression": self._lower_new_expression,
            "member_expression": self._lower_attribute,
            "subscript_expression": self._lower_subscript,
            "parenthesized_expression": self._lower_paren,
            "array": self._lower_list_literal,
            "object": self._lower_js_object_literal,
            "assignment_expression": self._lower_assignment_expr,
            "ternary_expression": self._lower_ternary,
            "sequence_expression": self._lower_sequence_expression,
        }
        self._STMT_DISPATCH: dict[str, Callable] = {
            "expression_statement": self._lower_expression_statement,
            "lexical_declaration": self._lower_var_declaration,
            "variable_declaration": self._lower_var_declaration,
            "return_statement": self._lower_return,
            "if_statement": self._lower_if,
            "while_statement": self._lower_while,
            "do_statement": self._lower_do_statement,
            "for_statement": self._lower_c_style_for,
            "for_in_statement": self._lower_for_in,
            "function_declaration": self._lower_function_def,
            "class_declaration": self._lower_js_class_def,
            "throw_statement": self._lower_throw,
            "statement_block": self._lower_block,
            "switch_statement": self._lower_switch_statement,
            "break_statement": self._lower_break,
            "continue_statement": self._lower_continue,
        }

    # ── JS blocks: function declarations are hoisted ─────────────

    def _lower_block(self, node):
        handler = self._STMT_DISPATCH.get(node.type)
        if handler is not None and node.type != "statement_block":
            handler(node)
            return
        named = [c for c in node.children if c.is_named]
        for child in named:
            if child.type == "function_declaration":
                self._lower_stmt(child)
        for child in named:
            if child.type != "function_declaration":
                self._lower_stmt(child)

    # ── JS var declaration ───────────────────────────────────────

    def _lower_var_declaration(self, node):
        for child in node.children:
            if child.type != "variable_declarator":
                continue
            name_node = child.child_by_field_name("name")
            value_node = child.child_by_field_name("value")
            if value_node is not None:
                val_reg = self._lower_expr(value_node)
                self._lower_store_target(name_node, val_reg, node)
            else:
                val_reg = self._emit_const(self.NONE_LITERAL)
                self._lower_store_target(name_node, val_reg, None)

    # ── JS store target ──────────────────────────────────────────

    def _lower_store_target(self, target, val_reg: str, parent_node):
        if target.type == "array_pattern":
            for i, child in enumerate(c for c in target.children if c.is_named):
                idx_reg = self._emit_const(str(i))
                elem_reg = self._fresh_reg()
                self._emit(
                    Opcode.LOAD_INDEX,
                    result_reg=elem_reg,
                    operands=[val_reg, idx_reg],
                )
                self._lower_store_target(child, elem_reg, parent_node)
            return
        if target.type == "parenthesized_expression":
            inner = next(c for c in target.children if c.is_named)
            self._lower_store_target(inner, val_reg, parent_node)
            return
        super()._lower_store_target(target, val_reg, parent_node)

    # ── JS assignment / update expressions ───────────────────────

    def _lower_assignment_expr(self, node) -> str:
        left = node.child_by_field_name("left")
        right = node.child_by_field_name("right")
        val_reg = self._lower_expr(right)
        self._lower_store_target(left, val_reg, node)
        return val_reg

    def _lower_update_expr(self, node) -> str:
        """Lower ``i++`` / ``--i``; postfix forms yield the old value."""
        arg = node.child_by_field_name("argument")
        op_node = node.child_by_field_name("operator")
        op_text = self._node_text(op_node) if op_node is not None else "++"
        is_prefix = node.children[0].type in ("++", "--")
        old_reg = self._lower_expr(arg)
        new_reg = self._fresh_reg()
        self._emit(
            Opcode.BINOP,
            result_reg=new_reg,
            operands=["+" if op_text == "++" else "-", old_reg, self._emit_const("1")],
            node=node,
        )
        self._lower_store_target(arg, new_reg, node)
        return new_reg if is_prefix else old_reg

    def _lower_sequence_expression(self, node) -> str:
        last = ""
        for child in node.children:
            if child.is_named:
                last = self._lower_expr(child)
        return last

    def _lower_js_unop(self, node) -> str:
        op_node = node.child_by_field_name("operator")
        arg = node.child_by_field_name("argument")
        op = self._normalize_operator(self._node_text(op_node))
        if op in ("delete", "void"):
            return self._lower_unsupported(node, f"operator:{op}")
        operand_reg = self._lower_expr(arg)
        reg = self._fresh_reg()
        self._emit(Opcode.UNOP, result_reg=reg, operands=[op, operand_reg], node=node)
        return reg

    # ── JS calls ─────────────────────────────────────────────────

    def _lower_call(self, node) -> str:
        func_node = node.child_by_field_name("function")
        args_node = node.child_by_field_name("arguments")
        if func_node is not None and func_node.type == "member_expression":
            obj_node = func_node.child_by_field_name("object")
            prop_node = func_node.child_by_field_name("property")
            obj_name = self._node_text(obj_node) if obj_node is not None else ""
            if obj_name == "console" or obj_name in NAMESPACE_OBJECTS:
                prop = self._node_text(prop_node)
                builtin = "print" if obj_name == "console" else f"{obj_name}.{prop}"
                arg_regs = self._extract_call_args(args_node)
                reg = self._fresh_reg()
                self._emit(
                    Opcode.CALL_FUNCTION,
                    result_reg=reg,
                    operands=[builtin] + arg_regs,
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
            if c.type == "spread_element":
                regs.append(self._lower_unsupported(c))
                continue
            regs.append(self._lower_expr(c))
        return regs

    def _lower_new_expression(self, node) -> str:
        """Lower ``new Foo(args)`` as a constructor call of ``Foo``."""
        constructor_node = node.child_by_field_name("constructor")
        args_node = node.child_by_field_name("arguments")
        if constructor_node is None or constructor_node.type != "identifier":
            return self._lower_unsupported(node, "dynamic_constructor")
        arg_regs = self._extract_call_args(args_node)
        reg = self._fresh_reg()
        self._emit(
            Opcode.CALL_FUNCTION,
            result_reg=reg,
            operands=[self._node_text(constructor_node)] + arg_regs,
            node=node,
        )
        return reg

    def _lower_attribute(self, node) -> str:
        """``Math.PI`` and friends load a builtin constant by dotted name."""
        obj_node = node.child_by_field_name("object")
        if obj_node is not None and self._node_text(obj_node) in NAMESPACE_OBJECTS:
            reg = self._fresh_reg()
            self._emit(
                Opcode.LOAD_VAR,
                result_reg=reg,
                operands=[self._node_text(node)],
                node=node,
            )
            return reg
        return super()._lower_attribute(node)

    # ── JS literals ──────────────────────────────────────────────

    def _lower_js_object_literal(self, node) -> str:
        pairs = []
        for child in node.children:
            if child.type == "pair":
                key_node = child.child_by_field_name("key")
                val_node = child.child_by_field_name("value")
                pairs.append((self._object_key(key_node), val_node))
            elif child.type == "shorthand_property_identifier":
                name = self._node_text(child)
                pairs.append((lambda name=name: self._emit_const(repr(name)), child))
            elif child.is_named and child.type not in self.COMMENT_TYPES:
                self._lower_unsupported(child)
        return self._lower_map_literal(pairs, node)

    def _object_key(self, key_node):
        if key_node.type == "property_identifier":
            name = self._node_text(key_node)
            return lambda: self._emit_const(repr(name))
        if key_node.type == "computed_property_name":
            inner = next(c for c in key_node.children if c.is_named)
            return inner
        return key_node

    def _lower_template_string(self, node) -> str:
        parts: list[str] = []
        for child in node.children:
            if child.type == "template_substitution":
                inner = next((c for c in child.children if c.is_named), None)
                if inner is None:
                    continue
                val_reg = self._lower_expr(inner)
                str_reg = self._fresh_reg()
                self._emit(
                    Opcode.CALL_FUNCTION,
                    result_reg=str_reg,
                    operands=["String", val_reg],
                )
                parts.append(str_reg)
            elif child.type == "string_fragment":
                parts.append(self._emit_const(repr(self._node_text(child))))
            elif child.type == "escape_sequence":
                parts.append(self._emit_const(f'"{self._node_text(child)}"'))
        if not parts:
            return self._emit_const("''", node=node)
        result = parts[0]
        for part in parts[1:]:
            new_reg = self._fresh_reg()
            self._emit(Opcode.BINOP, result_reg=new_reg, operands=["+", result, part])
            result = new_reg
        return result

    # ── JS ternary ───────────────────────────────────────────────

    def _lower_ternary(self, node) -> str:
        cond_node = node.child_by_field_name("condition")
        true_node = node.child_by_field_name("consequence")
        false_node = node.child_by_field_name("alternative")

        cond_reg = self._lower_expr(cond_node)
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
        true_reg = self._lower_expr(true_node)
        self._emit(Opcode.STORE_VAR, operands=[result_var, true_reg])
        self._emit(Opcode.BRANCH, label=end_label)

        self._emit(Opcode.LABEL, label=false_label)
        false_reg = self._lower_expr(false_node)
        self._emit(Opcode.STORE_VAR, operands=[result_var, false_reg])
        self._emit(Opcode.BRANCH, label=end_label)

        self._emit(Opcode.LABEL, label=end_label)
        result_reg = self._fresh_reg()
        self._emit(Opcode.LOAD_VAR, result_reg=result_reg, operands=[result_var])
        return result_reg

    # ── JS if alternative ────────────────────────────────────────

    def _lower_alternative(self, alt_node, end_label: str):
        if alt_node.type == "else_clause":
            for child in alt_node.children:
                if child.is_named:
                    self._lower_block(child)
            return
        self._lower_block(alt_node)

    # ── JS loops ─────────────────────────────────────────────────

    def _lower_c_style_for(self, node):
        init_node = node.child_by_field_name("initializer")
        cond_node = node.child_by_field_name("condition")
        update_node = node.child_by_field_name("increment")
        body_node = node.child_by_field_name("body")

        if init_node is not None:
            self._lower_stmt(init_node)
        if cond_node is not None and cond_node.type == "expression_statement":
            cond_node = next((c for c in cond_node.children if c.is_named), None)
        elif cond_node is not None and cond_node.type == "empty_statement":
            cond_node = None

        counter = self._begin_loop_counter()
        loop_label = self._fresh_label("for_cond")
        body_label = self._fresh_label("for_body")
        update_label = self._fresh_label("for_update")
        end_label = self._fresh_label("for_end")

        self._emit(Opcode.LABEL, label=loop_label)
        control_names = self._updated_names(update_node)
        if cond_node is not None:
            cond_reg = self._lower_expr(cond_node)
            control_names = control_names or self._collect_identifiers(cond_node)
        else:
            cond_reg = self._emit_const(self.TRUE_LITERAL)
        self._emit(
            Opcode.BRANCH_IF,
            operands=[cond_reg],
            label=f"{body_label},{end_label}",
            node=node,
        )

        self._emit(Opcode.LABEL, label=body_label)
        self._emit_loop_iter(counter, control_names, node)
        self._push_loop(update_label, end_label)
        if body_node is not None:
            self._lower_block(body_node)
        self._pop_loop()

        self._emit(Opcode.LABEL, label=update_label)
        if update_node is not None:
            self._lower_expr(update_node)
        self._emit(Opcode.BRANCH, label=loop_label)

        self._emit(Opcode.LABEL, label=end_label)

    def _updated_names(self, node) -> list[str]:
        """Variables a for-loop update clause assigns (`i++`, `i += 2, j--`)."""
        names: list[str] = []
        stack = [node] if node is not None else []
        while stack:
            current = stack.pop()
            if current.type == "update_expression":
                target = current.child_by_field_name("argument")
            elif current.type in ("assignment_expression", "augmented_assignment_expression"):
                target = current.child_by_field_name("left")
            else:
                if current.type in ("sequence_expression", "parenthesized_expression"):
                    stack.extend(reversed(current.named_children))
                continue
            if target is not None and target.type == "identifier":
                name = self._node_text(target)
                if name not in names:
                    names.append(name)
        return names

    def _lower_do_statement(self, node):
        body_node = node.child_by_field_name("body")
        cond_node = node.child_by_field_name("condition")

        counter = self._begin_loop_counter()
        body_label = self._fresh_label("do_body")
        cond_label = self._fresh_label("do_cond")
        end_label = self._fresh_label("do_end")

        self._emit(Opcode.LABEL, label=body_label)
        self._emit_loop_iter(counter, self._collect_identifiers(cond_node), node)
        self._push_loop(cond_label, end_label)
        self._lower_block(body_node)
        self._pop_loop()

        self._emit(Opcode.LABEL, label=cond_label)
        cond_reg = self._lower_expr(cond_node)
        self._emit(
            Opcode.BRANCH_IF,
            operands=[cond_reg],
            label=f"{body_label},{end_label}",
            node=cond_node,
        )
        self._emit(Opcode.LABEL, label=end_label)

    def _lower_for_in(self, node):
        """Lower ``for (x of xs)`` over values and ``for (k in obj)`` over keys."""
        left = node.child_by_field_name("left")
        right = node.child_by_field_name("right")
        body_node = node.child_by_field_name("body")
        operator_node = node.child_by_field_name("operator")
        is_for_of = operator_node is not None and self._node_text(operator_node) == "of"

        iter_reg = self._lower_expr(right)
        if not is_for_of:
            keys_reg = self._fresh_reg()
            self._emit(
                Opcode.CALL_FUNCTION,
                result_reg=keys_reg,
                operands=["Object.keys", iter_reg],
            )
            iter_reg = keys_reg

        self._lower_for_each(
            iter_reg,
            lambda elem_reg: self._lower_store_target(left, elem_reg, None),
            lambda: self._lower_block(body_node),
            node,
            self._collect_identifiers(left),
        )

    # ── JS switch statement ──────────────────────────────────────

    def _lower_switch_statement(self, node):
        """Lower ``switch`` as a dispatch chain followed by fall-through bodies."""
        value_node = node.child_by_field_name("value")
        body_node = node.child_by_field_name("body")

        disc_reg = self._lower_expr(value_node)
        end_label = self._fresh_label("switch_end")
        cases = [
            c for c in body_node.children if c.type in ("switch_case", "switch_default")
        ]
        body_labels = [self._fresh_label("case_body") for _ in cases]

        default_label = end_label
        for case_node, body_label in zip(cases, body_labels):
            if case_node.type == "switch_default":
                default_label = body_label
                continue
            case_reg = self._lower_expr(case_node.child_by_field_name("value"))
            cond_reg = self._fresh_reg()
            self._emit(
                Opcode.BINOP,
                result_reg=cond_reg,
                operands=["==", disc_reg, case_reg],
                node=case_node,
            )
            next_label = self._fresh_label("case_next")
            self._emit(
                Opcode.BRANCH_IF,
                operands=[cond_reg],
                label=f"{body_label},{next_label}",
                node=case_node,
            )
            self._emit(Opcode.LABEL, label=next_label)
        self._emit(Opcode.BRANCH, label=default_label)

        self._break_target_stack.append(end_label)
        for case_node, body_label in zip(cases, body_labels):
            self._emit(Opcode.LABEL, label=body_label)
            value_child = case_node.child_by_field_name("value")
            for child in case_node.children:
                if child.is_named and (value_child is None or child.id != value_child.id):
                    self._lower_stmt(child)
        self._break_target_stack.pop()
        self._emit(Opcode.LABEL, label=end_label)

    # ── JS parameters ────────────────────────────────────────────

    def _lower_param(self, child):
        if child.type == "identifier":
            self._emit_param(self._node_text(child), None, child)
            return
        if child.type == "assignment_pattern":
            left = child.child_by_field_name("left")
            right = child.child_by_field_name("right")
            if (
                left is not None
                and left.type == "identifier"
                and right is not None
                and right.type in self.LITERAL_DEFAULT_TYPES
            ):
                self._emit_param(self._node_text(left), self._node_text(right), child)
                return
        self._lower_unsupported(child, f"parameter:{child.type}")

    # ── JS throw ─────────────────────────────────────────────────

    def _lower_throw(self, node):
        self._lower_raise_or_throw(node, keyword="throw")

    # ── JS classes ───────────────────────────────────────────────

    def _lower_js_class_def(self, node):
        if any(c.type == "class_heritage" for c in node.children):
            self._lower_unsupported(node, "inheritance")
            return
        self._lower_class_def(node)

    def _lower_class_body(self, body_node):
        for child in body_node.children:
            if not child.is_named or child.type in self.COMMENT_TYPES:
                continue
            if child.type == "method_definition" and not any(
                c.type in ("static", "get", "set", "async", "*") for c in child.children
            ):
                self._lower_method_def(child)
            else:
                self._lower_unsupported(child, f"class_member:{child.type}")

    def _lower_method_def(self, node):
        name = self._node_text(node.child_by_field_name("name"))
        self._lower_function_body(
            name,
            node.child_by_field_name("parameters"),
            node.child_by_field_name("body"),
            node,
            implicit_params=("this",),
        )
