"""Execution trace engine: run guest programs, record and replay their steps."""

from .api import (  # noqa: F401
    lower_source,
    dump_ir,
    build_cfg_from_source,
    dump_cfg,
    execute_traced,
    extract_function_source,
)
from .config import ResourceLimits, SessionConfig, SessionRequest  # noqa: F401
from .navigation import Navigator, NavigationResult, NavigationStatus  # noqa: F401
from .session import Session  # noqa: F401
from .supervisor import SessionSupervisor  # noqa: F401
