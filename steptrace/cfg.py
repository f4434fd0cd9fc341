"""Control-flow graph over lowered IR.

Blocks keep layout order: the tracing machine falls through to the next
block in that order, and ``first_location`` scans forward through it.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .ir import IRInstruction, Opcode, SourceLocation
from . import constants


@dataclass
class BasicBlock:
    label: str
    instructions: list[IRInstruction] = field(default_factory=list)
    successors: list[str] = field(default_factory=list)
    predecessors: list[str] = field(default_factory=list)

    @property
    def last(self) -> IRInstruction | None:
        return self.instructions[-1] if self.instructions else None


@dataclass
class CFG:
    blocks: dict[str, BasicBlock] = field(default_factory=dict)
    entry: str = constants.CFG_ENTRY_LABEL

    def link(self, src: str, dst: str):
        source, target = self.blocks[src], self.blocks[dst]
        if dst not in source.successors:
            source.successors.append(dst)
        if src not in target.predecessors:
            target.predecessors.append(src)

    def first_location(self, label: str) -> SourceLocation | None:
        """Location of the first located instruction at or after *label*, in layout order."""
        labels = list(self.blocks)
        located = (
            inst
            for lbl in labels[labels.index(label) :]
            for inst in self.blocks[lbl].instructions
            if not inst.is_synthetic
        )
        first = next(located, None)
        return first.source_location if first is not None else None

    def __str__(self) -> str:
        def _names(labels: list[str]) -> str:
            return ", ".join(labels) or "(none)"

        out: list[str] = []
        for block in self.blocks.values():
            out.append(
                f"[{block.label}]  preds={_names(block.predecessors)}  succs={_names(block.successors)}"
            )
            out.extend(f"  {inst}" for inst in block.instructions)
            out.append("")
        return "\n".join(out)


def _leaders(instructions: list[IRInstruction]) -> list[int]:
    """Indices that open a block: labels, plus the instruction after each terminator."""
    leaders = {0}
    for i, inst in enumerate(instructions):
        if inst.opcode == Opcode.LABEL:
            leaders.add(i)
        elif inst.opcode.is_terminator and i + 1 < len(instructions):
            leaders.add(i + 1)
    return sorted(leaders)


def _split(instructions: list[IRInstruction]) -> list[BasicBlock]:
    leaders = _leaders(instructions)
    bounds = zip(leaders, leaders[1:] + [len(instructions)])
    blocks: list[BasicBlock] = []
    for start, end in bounds:
        body = instructions[start:end]
        if body and body[0].opcode == Opcode.LABEL:
            blocks.append(BasicBlock(label=body[0].label, instructions=body[1:]))
        else:
            blocks.append(BasicBlock(label=f"__block_{start}", instructions=body))
    return blocks


def build_cfg(instructions: list[IRInstruction]) -> CFG:
    """Partition *instructions* into basic blocks and wire jump and fall-through edges."""
    cfg = CFG()
    for block in _split(instructions):
        cfg.blocks[block.label] = block

    labels = list(cfg.blocks)
    for label, following in zip(labels, labels[1:] + [None]):
        block = cfg.blocks[label]
        last = block.last
        for target in (last.branch_targets if last is not None else []):
            if target in cfg.blocks:
                cfg.link(label, target)
        if following is not None and (last is None or not last.opcode.is_terminator):
            cfg.link(label, following)

    if labels:
        cfg.entry = labels[0]
    return cfg
