"""Function & Class Registry."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .ir import IRInstruction, Opcode
from .cfg import CFG
from . import constants

logger = logging.getLogger(__name__)

CONSTRUCTOR_NAMES: tuple[str, ...] = ("__init__", "constructor")


# ── Parse helpers ────────────────────────────────────────────────


@dataclass
class RefParseResult:
    """Result of parsing a function or class reference string."""

    matched: bool
    name: str = ""
    label: str = ""


class RefPatterns:
    """Compiled regex patterns for function/class references."""

    FUNC_RE = re.compile(constants.FUNC_REF_PATTERN)
    CLASS_RE = re.compile(constants.CLASS_REF_PATTERN)


def parse_func_ref(val: Any) -> RefParseResult:
    """Parse '<function:name@label>' → RefParseResult."""
    if not isinstance(val, str):
        return RefParseResult(matched=False)
    m = RefPatterns.FUNC_RE.fullmatch(val)
    if not m:
        return RefParseResult(matched=False)
    return RefParseResult(matched=True, name=m.group(1), label=m.group(2))


def parse_class_ref(val: Any) -> RefParseResult:
    """Parse '<class:name@label>' → RefParseResult."""
    if not isinstance(val, str):
        return RefParseResult(matched=False)
    m = RefPatterns.CLASS_RE.fullmatch(val)
    if not m:
        return RefParseResult(matched=False)
    return RefParseResult(matched=True, name=m.group(1), label=m.group(2))


# ── Registry ─────────────────────────────────────────────────────


@dataclass
class FunctionRegistry:
    # func_label → ordered list of parameter names
    func_params: dict[str, list[str]] = field(default_factory=dict)
    # func_label → {param_name → literal default text}
    func_defaults: dict[str, dict[str, str]] = field(default_factory=dict)
    # function name → func_label, for free functions only
    functions: dict[str, str] = field(default_factory=dict)
    # class_name → {method_name → func_label}
    class_methods: dict[str, dict[str, str]] = field(default_factory=dict)
    # class_name → class_body_label
    classes: dict[str, str] = field(default_factory=dict)

    def constructor_label(self, class_name: str) -> str:
        methods = self.class_methods.get(class_name, {})
        return next((methods[n] for n in CONSTRUCTOR_NAMES if n in methods), "")


def _scan_func_params(
    cfg: CFG,
) -> tuple[dict[str, list[str]], dict[str, dict[str, str]]]:
    """Extract parameter names and literal defaults from function entry blocks."""
    params: dict[str, list[str]] = {}
    defaults: dict[str, dict[str, str]] = {}
    for label, block in cfg.blocks.items():
        if not label.startswith(constants.FUNC_LABEL_PREFIX):
            continue
        names: list[str] = []
        label_defaults: dict[str, str] = {}
        for inst in block.instructions:
            if inst.opcode != Opcode.PARAM or not inst.operands:
                continue
            name = str(inst.operands[0])[len(constants.PARAM_PREFIX) :]
            names.append(name)
            if len(inst.operands) > 1:
                label_defaults[name] = str(inst.operands[1])
        params[label] = names
        defaults[label] = label_defaults
    return params, defaults


def _scan_classes(
    instructions: list[IRInstruction],
) -> tuple[dict[str, str], dict[str, dict[str, str]], dict[str, str]]:
    """Scan IR to find classes, their methods, and free functions.

    Returns (classes, class_methods, functions) where:
    - classes: class_name → class_body_label
    - class_methods: class_name → {method_name → func_label}
    - functions: function name → func_label, outside any class body
    """
    classes: dict[str, str] = {}
    class_methods: dict[str, dict[str, str]] = {}
    functions: dict[str, str] = {}

    # First pass: find class constants
    for inst in instructions:
        if inst.opcode != Opcode.CONST or not inst.operands:
            continue
        cr = parse_class_ref(str(inst.operands[0]))
        if cr.matched:
            classes[cr.name] = cr.label

    # Second pass: identify class scopes and their methods
    label_to_class = {label: name for name, label in classes.items()}
    in_class: str = ""
    for inst in instructions:
        if inst.opcode == Opcode.LABEL and inst.label:
            if inst.label in label_to_class:
                in_class = label_to_class[inst.label]
                class_methods.setdefault(in_class, {})
            elif inst.label.startswith(constants.END_CLASS_LABEL_PREFIX):
                in_class = ""

        if inst.opcode == Opcode.CONST and inst.operands:
            fr = parse_func_ref(str(inst.operands[0]))
            if not fr.matched:
                continue
            if in_class:
                class_methods[in_class][fr.name] = fr.label
            else:
                functions.setdefault(fr.name, fr.label)

    return classes, class_methods, functions


def build_registry(instructions: list[IRInstruction], cfg: CFG) -> FunctionRegistry:
    """Scan IR and CFG to build a function/class registry."""
    reg = FunctionRegistry()
    reg.func_params, reg.func_defaults = _scan_func_params(cfg)
    reg.classes, reg.class_methods, reg.functions = _scan_classes(instructions)
    logger.debug(
        "Registry: %d functions, %d classes",
        len(reg.func_params),
        len(reg.classes),
    )
    return reg
