"""steptrace command line: run a guest program and print its trace."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from .api import dump_cfg, dump_ir, execute_traced
from .config import ResourceLimits
from .errors import SecurityPolicyError, SteptraceError
from . import constants

logger = logging.getLogger(__name__)

DEMO_SOURCE = """\
def linear_search(arr, target):
    for i in range(len(arr)):
        if arr[i] == target:
            return i
    return -1

linear_search([3, 7, 9], 7)
"""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Execution trace engine")
    parser.add_argument("file", nargs="?", help="Guest source file (default: built-in demo)")
    parser.add_argument(
        "--language",
        "-l",
        default="python",
        choices=constants.SUPPORTED_LANGUAGES,
        help="Guest language (default: python)",
    )
    parser.add_argument("--entry", "-e", default=None, help="Entry point function name")
    parser.add_argument(
        "--args", default="[]", help="JSON array of arguments for the entry point"
    )
    parser.add_argument(
        "--inputs", default="{}", help="JSON object of globals bound before the module runs"
    )
    parser.add_argument(
        "--max-steps",
        "-n",
        type=int,
        default=constants.DEFAULT_STEP_LIMIT,
        help=f"Step ceiling (default: {constants.DEFAULT_STEP_LIMIT})",
    )
    parser.add_argument(
        "--time-limit",
        type=float,
        default=constants.DEFAULT_TIME_LIMIT_S,
        help=f"Wall-clock ceiling in seconds (default: {constants.DEFAULT_TIME_LIMIT_S})",
    )
    parser.add_argument(
        "--memory-limit",
        type=int,
        default=constants.DEFAULT_MEMORY_LIMIT_BYTES,
        help="Memory ceiling in bytes (default: 128 MiB)",
    )
    parser.add_argument("--seed", type=int, default=0, help="Seed for guest random()")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--ir-only", action="store_true", help="Only print the IR")
    parser.add_argument("--cfg-only", action="store_true", help="Only print the CFG")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.file:
        with open(args.file, encoding="utf-8") as f:
            source = f.read()
    else:
        source = DEMO_SOURCE

    if args.ir_only:
        print(dump_ir(source, args.language))
        return 0
    if args.cfg_only:
        print(dump_cfg(source, args.language))
        return 0

    try:
        arguments = json.loads(args.args)
        inputs = json.loads(args.inputs)
    except json.JSONDecodeError as exc:
        print(f"error: invalid JSON: {exc}", file=sys.stderr)
        return 2
    if not isinstance(arguments, list) or not isinstance(inputs, dict):
        print("error: --args must be a JSON array and --inputs a JSON object", file=sys.stderr)
        return 2

    try:
        limits = ResourceLimits(
            time_limit_s=args.time_limit,
            memory_limit_bytes=args.memory_limit,
            max_steps=args.max_steps,
        )
        trace = execute_traced(
            source,
            args.language,
            entry_point=args.entry,
            arguments=arguments,
            inputs=inputs,
            limits=limits,
            seed=args.seed,
        )
    except SecurityPolicyError as exc:
        print("error: program rejected", file=sys.stderr)
        for violation in exc.violations:
            print(f"  {violation}", file=sys.stderr)
        return 1
    except (SteptraceError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    for step in trace.steps:
        print(step.model_dump_json())
    print(trace.summary.model_dump_json())
    return 0 if trace.summary.reason.value == "completed" else 1


if __name__ == "__main__":
    sys.exit(main())
