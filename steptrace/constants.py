"""Named constants — eliminates magic strings across the codebase."""

from __future__ import annotations

PARAM_PREFIX = "param:"

FUNC_REF_PATTERN = r"<function:(\w+)@(\w+)>"
CLASS_REF_PATTERN = r"<class:(\w+)@(\w+)>"

FUNC_REF_TEMPLATE = "<function:{name}@{label}>"
CLASS_REF_TEMPLATE = "<class:{name}@{label}>"

OBJ_ADDR_PREFIX = "obj_"
ARR_ADDR_PREFIX = "arr_"
MAP_ADDR_PREFIX = "map_"

FUNC_LABEL_PREFIX = "func_"
CLASS_LABEL_PREFIX = "class_"
END_CLASS_LABEL_PREFIX = "end_class_"

MAIN_FRAME_NAME = "<main>"
CFG_ENTRY_LABEL = "entry"

# Names the frontends synthesize for loop counters, ternaries and
# short-circuit results. Never visible in snapshots; rejected in guest code.
INTERNAL_NAME_PREFIX = "__"
FOR_INDEX_PREFIX = "__for_idx_"
LOOP_COUNTER_PREFIX = "__loop_"
TERNARY_PREFIX = "__ternary_"
BOOL_RESULT_PREFIX = "__bool_"

# Builtins the frontends emit that guest code cannot name directly.
SLICE_BUILTIN = "$slice"
ITER_BUILTIN = "$iter"

UNSUPPORTED_PREFIX = "unsupported:"

TREE_NODE_FIELDS: frozenset[str] = frozenset(
    {"left", "right", "children", "parent"}
)

SUPPORTED_LANGUAGES: tuple[str, ...] = (
    "python",
    "javascript",
)

# Session defaults
DEFAULT_TIME_LIMIT_S = 5.0
DEFAULT_MEMORY_LIMIT_BYTES = 128 * 1024 * 1024
DEFAULT_STEP_LIMIT = 10_000
DEFAULT_MAX_SOURCE_BYTES = 10 * 1024
MIN_SPEED = 0.25
MAX_SPEED = 2.0
DEFAULT_MAX_SESSIONS = 32
DEFAULT_IDLE_TIMEOUT_S = 300.0

# Instructions run between governor checks when no step is produced.
INSTRUCTION_BUDGET = 1024

# Guest call depth at which a RecursionError fault is raised.
MAX_CALL_DEPTH = 1000

# Container nesting shown in snapshots and printed output before elision.
MAX_NESTING = 64
