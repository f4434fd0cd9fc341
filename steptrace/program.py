"""Compile pipeline — policy check → parse → lower → CFG → registry."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from .cfg import CFG, build_cfg
from .errors import SecurityPolicyError
from .frontend import get_frontend
from .ir import IRInstruction
from .parser import parse_source
from .policy import check_lowered, check_source
from .registry import FunctionRegistry, build_registry
from . import constants

logger = logging.getLogger(__name__)


@dataclass
class PipelineStats:
    """Timing and size statistics for each compile stage."""

    source_bytes: int = 0
    source_lines: int = 0
    language: str = ""

    # Stage timings (seconds)
    policy_time: float = 0.0
    lower_time: float = 0.0
    cfg_time: float = 0.0
    registry_time: float = 0.0

    ir_instruction_count: int = 0
    cfg_block_count: int = 0
    registry_functions: int = 0
    registry_classes: int = 0


@dataclass
class CompiledProgram:
    language: str
    instructions: list[IRInstruction]
    cfg: CFG
    registry: FunctionRegistry
    stats: PipelineStats = field(default_factory=PipelineStats)


def compile_program(
    source: str,
    language: str = "python",
    *,
    max_source_bytes: int = constants.DEFAULT_MAX_SOURCE_BYTES,
) -> CompiledProgram:
    """Validate and lower *source*; raises ``SecurityPolicyError`` on violations."""
    stats = PipelineStats(
        source_bytes=len(source.encode("utf-8")),
        source_lines=source.count("\n") + (1 if source and not source.endswith("\n") else 0),
        language=language,
    )

    t0 = time.perf_counter()
    violations = check_source(source, language, max_source_bytes=max_source_bytes)
    stats.policy_time = time.perf_counter() - t0
    if violations:
        logger.info("Rejected %s program: %d violation(s)", language, len(violations))
        raise SecurityPolicyError(violations)

    t0 = time.perf_counter()
    tree = parse_source(source, language)
    instructions = get_frontend(language).lower(tree, source.encode("utf-8"))
    stats.lower_time = time.perf_counter() - t0
    stats.ir_instruction_count = len(instructions)
    violations = check_lowered(instructions)
    if violations:
        logger.info("Rejected %s program: %d unsupported construct(s)", language, len(violations))
        raise SecurityPolicyError(violations)

    t0 = time.perf_counter()
    cfg = build_cfg(instructions)
    stats.cfg_time = time.perf_counter() - t0
    stats.cfg_block_count = len(cfg.blocks)

    t0 = time.perf_counter()
    registry = build_registry(instructions, cfg)
    stats.registry_time = time.perf_counter() - t0
    stats.registry_functions = len(registry.func_params)
    stats.registry_classes = len(registry.classes)

    logger.info(
        "Compiled %s program: %d IR instructions, %d blocks in %.1fms",
        language,
        stats.ir_instruction_count,
        stats.cfg_block_count,
        (stats.policy_time + stats.lower_time + stats.cfg_time + stats.registry_time) * 1000,
    )
    return CompiledProgram(
        language=language, instructions=instructions, cfg=cfg, registry=registry, stats=stats
    )
