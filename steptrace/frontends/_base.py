"""BaseFrontend — language-agnostic tree-sitter AST → IR lowering infrastructure."""

from __future__ import annotations

import logging
from typing import Any, Callable

from ..frontend import Frontend
from ..ir import NO_SOURCE_LOCATION, IRInstruction, Opcode, SourceLocation
from .. import constants

logger = logging.getLogger(__name__)


class BaseFrontend(Frontend):
    """Base class for deterministic tree-sitter frontends.

    Subclasses populate ``_STMT_DISPATCH`` and ``_EXPR_DISPATCH`` tables and
    override field-name / literal constants where the grammar differs from
    the defaults.

    Instructions emitted without a node carry no source location; the
    tracing machine treats them as synthetic and never reports them as
    steps.  Only instructions tied to guest syntax are observable.
    """

    # ── overridable constants ────────────────────────────────────

    FUNC_NAME_FIELD: str = "name"
    FUNC_PARAMS_FIELD: str = "parameters"
    FUNC_BODY_FIELD: str = "body"

    IF_CONDITION_FIELD: str = "condition"
    IF_CONSEQUENCE_FIELD: str = "consequence"
    IF_ALTERNATIVE_FIELD: str = "alternative"

    WHILE_CONDITION_FIELD: str = "condition"
    WHILE_BODY_FIELD: str = "body"

    CALL_FUNCTION_FIELD: str = "function"
    CALL_ARGUMENTS_FIELD: str = "arguments"

    CLASS_NAME_FIELD: str = "name"
    CLASS_BODY_FIELD: str = "body"

    ATTR_OBJECT_FIELD: str = "object"
    ATTR_ATTRIBUTE_FIELD: str = "attribute"

    SUBSCRIPT_VALUE_FIELD: str = "value"
    SUBSCRIPT_INDEX_FIELD: str = "subscript"

    ASSIGN_LEFT_FIELD: str = "left"
    ASSIGN_RIGHT_FIELD: str = "right"

    NONE_LITERAL: str = "None"
    TRUE_LITERAL: str = "true"
    FALSE_LITERAL: str = "false"
    DEFAULT_RETURN_VALUE: str = "None"

    COMMENT_TYPES: frozenset[str] = frozenset({"comment"})
    NOISE_TYPES: frozenset[str] = frozenset({"newline", "\n"})

    ATTRIBUTE_NODE_TYPE: str = "attribute"
    SUBSCRIPT_NODE_TYPE: str = "subscript"
    IDENTIFIER_TYPES: frozenset[str] = frozenset({"identifier"})

    # Operator spellings normalised to the VM's operator table.
    OPERATOR_ALIASES: dict[str, str] = {}

    # ── init ─────────────────────────────────────────────────────

    def __init__(self):
        self._reg_counter: int = 0
        self._label_counter: int = 0
        self._instructions: list[IRInstruction] = []
        self._source: bytes = b""
        self._loop_stack: list[dict[str, str]] = []
        self._break_target_stack: list[str] = []
        self._STMT_DISPATCH: dict[str, Callable] = {}
        self._EXPR_DISPATCH: dict[str, Callable] = {}

    # ── helpers ──────────────────────────────────────────────────

    def _fresh_reg(self) -> str:
        r = f"%{self._reg_counter}"
        self._reg_counter += 1
        return r

    def _fresh_label(self, prefix: str = "L") -> str:
        lbl = f"{prefix}_{self._label_counter}"
        self._label_counter += 1
        return lbl

    def _fresh_internal_name(self, prefix: str) -> str:
        name = f"{prefix}{self._label_counter}"
        self._label_counter += 1
        return name

    def _emit(
        self,
        opcode: Opcode,
        *,
        result_reg: str = "",
        operands: list[Any] = [],
        label: str = "",
        source_location: SourceLocation = NO_SOURCE_LOCATION,
        node=None,
    ) -> IRInstruction:
        loc = (
            source_location
            if not source_location.is_unknown()
            else (self._source_loc(node) if node else NO_SOURCE_LOCATION)
        )
        inst = IRInstruction(
            opcode=opcode,
            result_reg=result_reg or None,
            operands=list(operands),
            label=label or None,
            source_location=loc,
        )
        self._instructions.append(inst)
        return inst

    def _emit_const(self, text: str, node=None) -> str:
        reg = self._fresh_reg()
        self._emit(Opcode.CONST, result_reg=reg, operands=[text], node=node)
        return reg

    def _node_text(self, node) -> str:
        return self._source[node.start_byte : node.end_byte].decode("utf-8")

    def _source_loc(self, node) -> SourceLocation:
        return SourceLocation.span(node.start_point, node.end_point)

    def _end_loc(self, node) -> SourceLocation:
        """A zero-width location at the last line of *node*."""
        return SourceLocation.point(node.end_point)

    def _normalize_operator(self, op: str) -> str:
        return self.OPERATOR_ALIASES.get(op, op)

    # ── entry point ──────────────────────────────────────────────

    def lower(self, tree, source: bytes) -> list[IRInstruction]:
        self._reg_counter = 0
        self._label_counter = 0
        self._instructions = []
        self._source = source
        self._loop_stack = []
        self._break_target_stack = []
        root = tree.root_node
        self._emit(Opcode.LABEL, label=constants.CFG_ENTRY_LABEL)
        self._lower_block(root)
        logger.debug("Lowered %d bytes to %d IR instructions", len(source), len(self._instructions))
        return self._instructions

    # ── dispatchers ──────────────────────────────────────────────

    def _lower_block(self, node):
        """Lower a block of statements (module / suite / body).

        If *node* is itself a known statement whose handler is **not**
        ``_lower_block`` (e.g. a bare ``return_statement`` used as the
        consequence of an ``if``), it is lowered directly rather than
        iterating its children as sub-statements.
        """
        handler = self._STMT_DISPATCH.get(node.type)
        if (
            handler is not None
            and getattr(handler, "__func__", None) is not BaseFrontend._lower_block
        ):
            handler(node)
            return
        for child in node.children:
            if not child.is_named:
                continue
            self._lower_stmt(child)

    def _lower_stmt(self, node):
        ntype = node.type
        if ntype in self.COMMENT_TYPES or ntype in self.NOISE_TYPES:
            return
        handler = self._STMT_DISPATCH.get(ntype)
        if handler:
            handler(node)
            return
        self._lower_expr(node)

    def _lower_expr(self, node) -> str:
        """Lower an expression, return the register holding its value."""
        handler = self._EXPR_DISPATCH.get(node.type)
        if handler:
            return handler(node)
        return self._lower_unsupported(node)

    def _lower_unsupported(self, node, what: str = "") -> str:
        reg = self._fresh_reg()
        self._emit(
            Opcode.UNSUPPORTED,
            result_reg=reg,
            operands=[f"{constants.UNSUPPORTED_PREFIX}{what or node.type}"],
            node=node,
        )
        return reg

    # ── common expression lowerers ───────────────────────────────

    def _lower_const_literal(self, node) -> str:
        return self._emit_const(self._node_text(node), node=node)

    def _lower_identifier(self, node) -> str:
        reg = self._fresh_reg()
        self._emit(
            Opcode.LOAD_VAR,
            result_reg=reg,
            operands=[self._node_text(node)],
            node=node,
        )
        return reg

    def _lower_paren(self, node) -> str:
        inner = next(
            (c for c in node.children if c.type not in ("(", ")")),
            None,
        )
        if inner is None:
            return self._lower_const_literal(node)
        return self._lower_expr(inner)

    def _lower_binop(self, node) -> str:
        children = [c for c in node.children if c.type not in ("(", ")")]
        op = self._normalize_operator(self._node_text(children[1]))
        if op in ("and", "or"):
            return self._lower_short_circuit(
                op,
                lambda: self._lower_expr(children[0]),
                lambda: self._lower_expr(children[2]),
            )
        lhs_reg = self._lower_expr(children[0])
        rhs_reg = self._lower_expr(children[2])
        reg = self._fresh_reg()
        self._emit(
            Opcode.BINOP,
            result_reg=reg,
            operands=[op, lhs_reg, rhs_reg],
            node=node,
        )
        return reg

    def _lower_short_circuit(
        self,
        op: str,
        lower_lhs: Callable[[], str],
        lower_rhs: Callable[[], str],
    ) -> str:
        """Lower ``a and b`` / ``a or b`` so *b* only runs when it decides the result."""
        result_var = self._fresh_internal_name(constants.BOOL_RESULT_PREFIX)
        rhs_label = self._fresh_label("bool_rhs")
        short_label = self._fresh_label("bool_short")
        end_label = self._fresh_label("bool_end")

        lhs_reg = lower_lhs()
        targets = (
            f"{rhs_label},{short_label}" if op == "and" else f"{short_label},{rhs_label}"
        )
        self._emit(Opcode.BRANCH_IF, operands=[lhs_reg], label=targets)

        self._emit(Opcode.LABEL, label=short_label)
        self._emit(Opcode.STORE_VAR, operands=[result_var, lhs_reg])
        self._emit(Opcode.BRANCH, label=end_label)

        self._emit(Opcode.LABEL, label=rhs_label)
        rhs_reg = lower_rhs()
        self._emit(Opcode.STORE_VAR, operands=[result_var, rhs_reg])
        self._emit(Opcode.BRANCH, label=end_label)

        self._emit(Opcode.LABEL, label=end_label)
        reg = self._fresh_reg()
        self._emit(Opcode.LOAD_VAR, result_reg=reg, operands=[result_var])
        return reg

    def _lower_unop(self, node) -> str:
        children = [c for c in node.children if c.type not in ("(", ")")]
        op = self._normalize_operator(self._node_text(children[0]))
        operand_reg = self._lower_expr(children[1])
        reg = self._fresh_reg()
        self._emit(
            Opcode.UNOP,
            result_reg=reg,
            operands=[op, operand_reg],
            node=node,
        )
        return reg

    def _lower_call(self, node) -> str:
        func_node = node.child_by_field_name(self.CALL_FUNCTION_FIELD)
        args_node = node.child_by_field_name(self.CALL_ARGUMENTS_FIELD)
        return self._lower_call_impl(func_node, args_node, node)

    def _lower_call_impl(self, func_node, args_node, node) -> str:
        arg_regs = self._extract_call_args(args_node)

        # Method call: obj.method(...)
        if func_node is not None and func_node.type == self.ATTRIBUTE_NODE_TYPE:
            obj_node = func_node.child_by_field_name(self.ATTR_OBJECT_FIELD)
            attr_node = func_node.child_by_field_name(self.ATTR_ATTRIBUTE_FIELD)
            if obj_node is not None and attr_node is not None:
                obj_reg = self._lower_expr(obj_node)
                reg = self._fresh_reg()
                self._emit(
                    Opcode.CALL_METHOD,
                    result_reg=reg,
                    operands=[obj_reg, self._node_text(attr_node)] + arg_regs,
                    node=node,
                )
                return reg

        # Plain function call
        if func_node is not None and func_node.type in self.IDENTIFIER_TYPES:
            reg = self._fresh_reg()
            self._emit(
                Opcode.CALL_FUNCTION,
                result_reg=reg,
                operands=[self._node_text(func_node)] + arg_regs,
                node=node,
            )
            return reg

        # Dynamic call target, e.g. handlers[i](x)
        if func_node is None:
            return self._lower_unsupported(node, "unknown_call_target")
        target_reg = self._lower_expr(func_node)
        reg = self._fresh_reg()
        self._emit(
            Opcode.CALL_UNKNOWN,
            result_reg=reg,
            operands=[target_reg] + arg_regs,
            node=node,
        )
        return reg

    def _extract_call_args(self, args_node) -> list[str]:
        """Extract argument registers from a call arguments node."""
        if args_node is None:
            return []
        return [
            self._lower_expr(c)
            for c in args_node.children
            if c.is_named and c.type not in self.COMMENT_TYPES
        ]

    def _lower_attribute(self, node) -> str:
        obj_node = node.child_by_field_name(self.ATTR_OBJECT_FIELD)
        attr_node = node.child_by_field_name(self.ATTR_ATTRIBUTE_FIELD)
        if obj_node is None or attr_node is None:
            return self._lower_unsupported(node)
        obj_reg = self._lower_expr(obj_node)
        reg = self._fresh_reg()
        self._emit(
            Opcode.LOAD_FIELD,
            result_reg=reg,
            operands=[obj_reg, self._node_text(attr_node)],
            node=node,
        )
        return reg

    def _lower_subscript(self, node) -> str:
        obj_node = node.child_by_field_name(self.SUBSCRIPT_VALUE_FIELD)
        idx_node = node.child_by_field_name(self.SUBSCRIPT_INDEX_FIELD)
        if obj_node is None or idx_node is None:
            return self._lower_unsupported(node)
        obj_reg = self._lower_expr(obj_node)
        idx_reg = self._lower_expr(idx_node)
        reg = self._fresh_reg()
        self._emit(
            Opcode.LOAD_INDEX,
            result_reg=reg,
            operands=[obj_reg, idx_reg],
            node=node,
        )
        return reg

    # ── common store target ──────────────────────────────────────

    def _lower_store_target(self, target, val_reg: str, parent_node):
        """Store *val_reg* into *target*; a ``None`` parent makes the store synthetic."""
        if target.type in self.IDENTIFIER_TYPES:
            self._emit(
                Opcode.STORE_VAR,
                operands=[self._node_text(target), val_reg],
                node=parent_node,
            )
        elif target.type == self.ATTRIBUTE_NODE_TYPE:
            obj_node = target.child_by_field_name(self.ATTR_OBJECT_FIELD)
            attr_node = target.child_by_field_name(self.ATTR_ATTRIBUTE_FIELD)
            if obj_node is None or attr_node is None:
                self._lower_unsupported(target, "store_target")
                return
            obj_reg = self._lower_expr(obj_node)
            self._emit(
                Opcode.STORE_FIELD,
                operands=[obj_reg, self._node_text(attr_node), val_reg],
                node=parent_node,
            )
        elif target.type == self.SUBSCRIPT_NODE_TYPE:
            obj_node = target.child_by_field_name(self.SUBSCRIPT_VALUE_FIELD)
            idx_node = target.child_by_field_name(self.SUBSCRIPT_INDEX_FIELD)
            if obj_node is None or idx_node is None:
                self._lower_unsupported(target, "store_target")
                return
            obj_reg = self._lower_expr(obj_node)
            idx_reg = self._lower_expr(idx_node)
            self._emit(
                Opcode.STORE_INDEX,
                operands=[obj_reg, idx_reg, val_reg],
                node=parent_node,
            )
        else:
            self._lower_unsupported(target, f"store_target:{target.type}")

    # ── common statement lowerers ────────────────────────────────

    def _lower_assignment(self, node):
        left = node.child_by_field_name(self.ASSIGN_LEFT_FIELD)
        right = node.child_by_field_name(self.ASSIGN_RIGHT_FIELD)
        if right is None:
            # Bare annotation such as ``x: int``
            return
        val_reg = self._lower_expr(right)
        self._lower_store_target(left, val_reg, node)

    def _lower_augmented_assignment(self, node):
        left = node.child_by_field_name(self.ASSIGN_LEFT_FIELD)
        right = node.child_by_field_name(self.ASSIGN_RIGHT_FIELD)
        op_node = next(
            c for c in node.children if not c.is_named and c.type.endswith("=")
        )
        op_text = self._normalize_operator(self._node_text(op_node)[:-1])
        lhs_reg = self._lower_expr(left)
        rhs_reg = self._lower_expr(right)
        result = self._fresh_reg()
        self._emit(
            Opcode.BINOP,
            result_reg=result,
            operands=[op_text, lhs_reg, rhs_reg],
            node=node,
        )
        self._lower_store_target(left, result, node)
        return result

    def _lower_return(self, node):
        """Lower a return statement. Override for language-specific keyword."""
        children = [c for c in node.children if c.is_named]
        if children:
            val_reg = self._lower_expr(children[0])
        else:
            val_reg = self._emit_const(self.DEFAULT_RETURN_VALUE)
        self._emit(
            Opcode.RETURN,
            operands=[val_reg],
            node=node,
        )

    def _lower_if(self, node):
        cond_node = node.child_by_field_name(self.IF_CONDITION_FIELD)
        body_node = node.child_by_field_name(self.IF_CONSEQUENCE_FIELD)
        alt_node = node.child_by_field_name(self.IF_ALTERNATIVE_FIELD)

        cond_reg = self._lower_expr(cond_node)
        true_label = self._fresh_label("if_true")
        false_label = self._fresh_label("if_false")
        end_label = self._fresh_label("if_end")

        self._emit(
            Opcode.BRANCH_IF,
            operands=[cond_reg],
            label=f"{true_label},{false_label if alt_node else end_label}",
            node=node,
        )

        self._emit(Opcode.LABEL, label=true_label)
        self._lower_block(body_node)
        self._emit(Opcode.BRANCH, label=end_label)

        if alt_node:
            self._emit(Opcode.LABEL, label=false_label)
            self._lower_alternative(alt_node, end_label)
            self._emit(Opcode.BRANCH, label=end_label)

        self._emit(Opcode.LABEL, label=end_label)

    def _lower_alternative(self, alt_node, end_label: str):
        """Lower an else/elif/else-if alternative block."""
        alt_type = alt_node.type
        if alt_type == "elif_clause":
            self._lower_elif(alt_node, end_label)
        elif alt_type in ("else_clause", "else"):
            body = alt_node.child_by_field_name("body")
            if body:
                self._lower_block(body)
            else:
                for child in alt_node.children:
                    if child.is_named:
                        self._lower_stmt(child)
        else:
            self._lower_block(alt_node)

    def _lower_elif(self, node, end_label: str):
        cond_node = node.child_by_field_name(self.IF_CONDITION_FIELD)
        body_node = node.child_by_field_name(self.IF_CONSEQUENCE_FIELD)
        alt_node = node.child_by_field_name(self.IF_ALTERNATIVE_FIELD)

        cond_reg = self._lower_expr(cond_node)
        true_label = self._fresh_label("elif_true")
        false_label = self._fresh_label("elif_false") if alt_node else end_label

        self._emit(
            Opcode.BRANCH_IF,
            operands=[cond_reg],
            label=f"{true_label},{false_label}",
            node=node,
        )

        self._emit(Opcode.LABEL, label=true_label)
        self._lower_block(body_node)
        self._emit(Opcode.BRANCH, label=end_label)

        if alt_node:
            self._emit(Opcode.LABEL, label=false_label)
            self._lower_alternative(alt_node, end_label)
            self._emit(Opcode.BRANCH, label=end_label)

    # ── loops ────────────────────────────────────────────────────

    def _lower_break(self, node):
        """Lower break statement as BRANCH to innermost break target."""
        if not self._break_target_stack:
            self._lower_unsupported(node, "break_outside_loop")
            return
        self._emit(Opcode.BRANCH, label=self._break_target_stack[-1], node=node)

    def _lower_continue(self, node):
        """Lower continue statement as BRANCH to innermost loop continue label."""
        if not self._loop_stack:
            self._lower_unsupported(node, "continue_outside_loop")
            return
        self._emit(
            Opcode.BRANCH,
            label=self._loop_stack[-1]["continue_label"],
            node=node,
        )

    def _push_loop(self, continue_label: str, end_label: str):
        """Push a loop context onto both the loop stack and break target stack."""
        self._loop_stack.append(
            {"continue_label": continue_label, "end_label": end_label}
        )
        self._break_target_stack.append(end_label)

    def _pop_loop(self):
        """Pop a loop context from both stacks."""
        self._loop_stack.pop()
        self._break_target_stack.pop()

    def _begin_loop_counter(self) -> str:
        """Emit a zeroed per-frame iteration counter and return its name."""
        counter = self._fresh_internal_name(constants.LOOP_COUNTER_PREFIX)
        zero = self._emit_const("0")
        self._emit(Opcode.STORE_VAR, operands=[counter, zero])
        return counter

    def _emit_loop_iter(self, counter: str, control_names: list[str], node):
        self._emit(Opcode.LOOP_ITER, operands=[counter] + control_names, node=node)

    def _collect_identifiers(self, node) -> list[str]:
        """Names read by *node*, in source order, skipping called function names."""
        names: list[str] = []
        stack = [node]
        while stack:
            current = stack.pop()
            if current.type in self.IDENTIFIER_TYPES:
                parent = current.parent
                callee = (
                    parent.child_by_field_name(self.CALL_FUNCTION_FIELD)
                    if parent is not None
                    else None
                )
                if callee is None or callee.id != current.id:
                    text = self._node_text(current)
                    if text not in names:
                        names.append(text)
                continue
            if current.type == self.ATTRIBUTE_NODE_TYPE:
                obj = current.child_by_field_name(self.ATTR_OBJECT_FIELD)
                if obj is not None:
                    stack.append(obj)
                continue
            stack.extend(reversed(current.children))
        return names

    def _lower_while(self, node):
        cond_node = node.child_by_field_name(self.WHILE_CONDITION_FIELD)
        body_node = node.child_by_field_name(self.WHILE_BODY_FIELD)

        counter = self._begin_loop_counter()
        loop_label = self._fresh_label("while_cond")
        body_label = self._fresh_label("while_body")
        end_label = self._fresh_label("while_end")

        self._emit(Opcode.LABEL, label=loop_label)
        cond_reg = self._lower_expr(cond_node)
        self._emit(
            Opcode.BRANCH_IF,
            operands=[cond_reg],
            label=f"{body_label},{end_label}",
            node=node,
        )

        self._emit(Opcode.LABEL, label=body_label)
        self._emit_loop_iter(counter, self._collect_identifiers(cond_node), node)
        self._push_loop(loop_label, end_label)
        self._lower_block(body_node)
        self._pop_loop()
        self._emit(Opcode.BRANCH, label=loop_label)

        self._emit(Opcode.LABEL, label=end_label)

    def _lower_for_each(
        self,
        iterable_reg: str,
        bind: Callable[[str], None],
        body: Callable[[], None],
        node,
        control_names: list[str],
        observe: bool = True,
    ):
        """Lower a for-each loop over *iterable_reg*.

        The index bookkeeping is synthetic.  When *observe* is set each
        iteration starts with a LOOP_ITER tied to *node*, emitted after the
        loop variable is bound so the step shows the new binding.
        """
        seq_reg = self._fresh_reg()
        self._emit(
            Opcode.CALL_FUNCTION,
            result_reg=seq_reg,
            operands=[constants.ITER_BUILTIN, iterable_reg],
        )
        idx_var = self._fresh_internal_name(constants.FOR_INDEX_PREFIX)
        self._emit(Opcode.STORE_VAR, operands=[idx_var, self._emit_const("0")])
        counter = self._begin_loop_counter() if observe else ""

        loop_label = self._fresh_label("for_cond")
        body_label = self._fresh_label("for_body")
        end_label = self._fresh_label("for_end")

        self._emit(Opcode.LABEL, label=loop_label)
        idx_reg = self._fresh_reg()
        self._emit(Opcode.LOAD_VAR, result_reg=idx_reg, operands=[idx_var])
        len_reg = self._fresh_reg()
        self._emit(Opcode.CALL_FUNCTION, result_reg=len_reg, operands=["len", seq_reg])
        cond_reg = self._fresh_reg()
        self._emit(Opcode.BINOP, result_reg=cond_reg, operands=["<", idx_reg, len_reg])
        self._emit(
            Opcode.BRANCH_IF,
            operands=[cond_reg],
            label=f"{body_label},{end_label}",
        )

        self._emit(Opcode.LABEL, label=body_label)
        cur_reg = self._fresh_reg()
        self._emit(Opcode.LOAD_VAR, result_reg=cur_reg, operands=[idx_var])
        elem_reg = self._fresh_reg()
        self._emit(Opcode.LOAD_INDEX, result_reg=elem_reg, operands=[seq_reg, cur_reg])
        next_reg = self._fresh_reg()
        self._emit(
            Opcode.BINOP,
            result_reg=next_reg,
            operands=["+", cur_reg, self._emit_const("1")],
        )
        self._emit(Opcode.STORE_VAR, operands=[idx_var, next_reg])
        bind(elem_reg)
        if observe:
            self._emit_loop_iter(counter, control_names, node)

        self._push_loop(loop_label, end_label)
        body()
        self._pop_loop()
        self._emit(Opcode.BRANCH, label=loop_label)

        self._emit(Opcode.LABEL, label=end_label)

    # ── definitions ──────────────────────────────────────────────

    def _lower_function_def(self, node):
        name_node = node.child_by_field_name(self.FUNC_NAME_FIELD)
        params_node = node.child_by_field_name(self.FUNC_PARAMS_FIELD)
        body_node = node.child_by_field_name(self.FUNC_BODY_FIELD)

        func_name = self._node_text(name_node)
        self._lower_function_body(func_name, params_node, body_node, node)

    def _lower_function_body(
        self, func_name: str, params_node, body_node, node, implicit_params=()
    ) -> str:
        """Emit a skipped-over function body and bind its reference to *func_name*."""
        func_label = self._fresh_label(f"{constants.FUNC_LABEL_PREFIX}{func_name}")
        end_label = self._fresh_label(f"end_{func_name}")

        self._emit(Opcode.BRANCH, label=end_label)
        self._emit(Opcode.LABEL, label=func_label)

        for pname in implicit_params:
            self._emit_param(pname, None, node)
        if params_node:
            self._lower_params(params_node)

        # Loops inside the body must not see the enclosing loop context
        saved_loops, saved_breaks = self._loop_stack, self._break_target_stack
        self._loop_stack, self._break_target_stack = [], []
        if body_node:
            self._lower_block(body_node)
        self._loop_stack, self._break_target_stack = saved_loops, saved_breaks

        # Implicit return at end of function
        none_reg = self._emit_const(self.DEFAULT_RETURN_VALUE)
        self._emit(
            Opcode.RETURN,
            operands=[none_reg],
            source_location=self._end_loc(node),
        )

        self._emit(Opcode.LABEL, label=end_label)

        func_reg = self._emit_const(
            constants.FUNC_REF_TEMPLATE.format(name=func_name, label=func_label)
        )
        self._emit(Opcode.STORE_VAR, operands=[func_name, func_reg])
        return func_label

    def _lower_params(self, params_node):
        """Lower function parameters. Override for language-specific param shapes."""
        for child in params_node.children:
            if child.is_named and child.type not in self.COMMENT_TYPES:
                self._lower_param(child)

    def _lower_param(self, child):
        pname = self._extract_param_name(child)
        if pname is None:
            self._lower_unsupported(child, f"parameter:{child.type}")
            return
        self._emit_param(pname, None, child)

    def _emit_param(self, pname: str, default_text: str | None, node):
        """Bind parameter *pname* from the caller; *default_text* is a literal default."""
        operands = [f"{constants.PARAM_PREFIX}{pname}"]
        if default_text is not None:
            operands.append(default_text)
        reg = self._fresh_reg()
        self._emit(Opcode.PARAM, result_reg=reg, operands=operands, node=node)
        self._emit(Opcode.STORE_VAR, operands=[pname, reg])

    def _extract_param_name(self, child) -> str | None:
        """Extract parameter name from a parameter node. Override per language."""
        if child.type in self.IDENTIFIER_TYPES:
            return self._node_text(child)
        for field in ("name", "pattern"):
            name_node = child.child_by_field_name(field)
            if name_node is not None and name_node.type in self.IDENTIFIER_TYPES:
                return self._node_text(name_node)
        return None

    def _lower_class_def(self, node):
        name_node = node.child_by_field_name(self.CLASS_NAME_FIELD)
        body_node = node.child_by_field_name(self.CLASS_BODY_FIELD)
        class_name = self._node_text(name_node)

        class_label = self._fresh_label(f"{constants.CLASS_LABEL_PREFIX}{class_name}")
        end_label = self._fresh_label(f"{constants.END_CLASS_LABEL_PREFIX}{class_name}")

        self._emit(Opcode.BRANCH, label=end_label)
        self._emit(Opcode.LABEL, label=class_label)
        if body_node:
            self._lower_class_body(body_node)
        self._emit(Opcode.LABEL, label=end_label)

        cls_reg = self._emit_const(
            constants.CLASS_REF_TEMPLATE.format(name=class_name, label=class_label)
        )
        self._emit(Opcode.STORE_VAR, operands=[class_name, cls_reg])

    def _lower_class_body(self, body_node):
        self._lower_block(body_node)

    def _lower_raise_or_throw(self, node, keyword: str = "raise"):
        children = [c for c in node.children if c.is_named]
        if children:
            val_reg = self._lower_expr(children[0])
        else:
            val_reg = self._emit_const(self.NONE_LITERAL)
        self._emit(
            Opcode.THROW,
            operands=[val_reg],
            node=node,
        )

    # ── literals ─────────────────────────────────────────────────

    def _lower_sequence_literal(self, elems: list, type_hint: str, node) -> str:
        """Build an array; element stores are construction, hence synthetic."""
        arr_reg = self._fresh_reg()
        size_reg = self._emit_const(str(len(elems)))
        self._emit(
            Opcode.NEW_ARRAY,
            result_reg=arr_reg,
            operands=[type_hint, size_reg],
            node=node,
        )
        for i, elem in enumerate(elems):
            val_reg = self._lower_expr(elem)
            idx_reg = self._emit_const(str(i))
            self._emit(Opcode.STORE_INDEX, operands=[arr_reg, idx_reg, val_reg])
        return arr_reg

    def _lower_list_literal(self, node) -> str:
        elems = [c for c in node.children if c.is_named and c.type not in self.COMMENT_TYPES]
        return self._lower_sequence_literal(elems, "list", node)

    def _lower_map_literal(self, pairs: list[tuple[Any, Any]], node) -> str:
        """Build a map from (key_node_or_reg_fn, value_node) pairs."""
        obj_reg = self._fresh_reg()
        self._emit(
            Opcode.NEW_OBJECT,
            result_reg=obj_reg,
            operands=["dict"],
            node=node,
        )
        for key, value in pairs:
            key_reg = key() if callable(key) else self._lower_expr(key)
            val_reg = self._lower_expr(value)
            self._emit(Opcode.STORE_INDEX, operands=[obj_reg, key_reg, val_reg])
        return obj_reg

    def _lower_expression_statement(self, node):
        """Lower an expression statement (unwrap and lower the inner expr)."""
        for child in node.children:
            if child.is_named and child.type not in self.COMMENT_TYPES:
                self._lower_stmt(child)
