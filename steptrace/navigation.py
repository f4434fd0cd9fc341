"""Navigation Facade — a per-consumer cursor over one session's trace.

Every operation is a read against the Trace Store; the interpreter is
never re-run.  Boundary conditions come back as a status, not an error,
and leave both the cursor and the session untouched.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import TYPE_CHECKING, Iterator

from pydantic import BaseModel

from .trace_types import Step, TraceSummary

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)


class NavigationStatus(str, Enum):
    OK = "ok"
    END_OF_TRACE = "end_of_trace"
    START_OF_TRACE = "start_of_trace"
    OUT_OF_RANGE = "out_of_range"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class NavigationResult(BaseModel):
    status: NavigationStatus
    position: int
    step: Step | None = None
    summary: TraceSummary | None = None


class Navigator:
    """Cursor over a session's steps.

    One navigator serves one consumer; ``pause``/``resume`` may be called
    from another thread while ``play`` is iterating.
    """

    def __init__(self, session: Session):
        self._session = session
        self._store = session.store
        self._position = 0
        self._resume = threading.Event()
        self._resume.set()

    @property
    def position(self) -> int:
        return self._position

    # ── Movement ─────────────────────────────────────────────────

    def current(self) -> NavigationResult:
        """The step under the cursor, waiting for it while the session runs."""
        return self._move_to(self._position, past_end=NavigationStatus.END_OF_TRACE)

    def advance(self, n: int = 1) -> NavigationResult:
        if n < 1:
            raise ValueError(f"advance needs n >= 1, got {n}")
        return self._move_to(self._position + n, past_end=NavigationStatus.END_OF_TRACE)

    def retreat(self, n: int = 1) -> NavigationResult:
        if n < 1:
            raise ValueError(f"retreat needs n >= 1, got {n}")
        target = self._position - n
        if target < 0:
            return self._result(NavigationStatus.START_OF_TRACE)
        self._position = target
        return self._result(NavigationStatus.OK)

    def seek(self, sequence: int) -> NavigationResult:
        if sequence < 0:
            return self._result(NavigationStatus.OUT_OF_RANGE)
        return self._move_to(sequence, past_end=NavigationStatus.OUT_OF_RANGE)

    def reset(self) -> NavigationResult:
        self._position = 0
        return self._result(NavigationStatus.OK)

    # ── Session control ──────────────────────────────────────────

    def set_speed(self, multiplier: float) -> NavigationResult:
        self._session.set_speed(multiplier)
        return self._result(NavigationStatus.OK)

    def cancel(self) -> NavigationResult:
        self._session.cancel()
        return self._result(NavigationStatus.OK)

    def pause(self):
        self._resume.clear()

    def resume(self):
        self._resume.set()

    def play(self, interval_s: float = 0.0) -> Iterator[Step]:
        """Yield steps from the cursor onward, paced by ``interval_s / speed``.

        Stops at the end of the trace, on cancellation, or when waiting for
        the next step times out.
        """
        result = self.current()
        cancel = self._session.cancel_event
        while result.step is not None:
            yield result.step
            while not self._resume.wait(0.05):
                if cancel.is_set():
                    return
            delay = interval_s / self._session.speed
            if delay > 0 and cancel.wait(delay):
                return
            result = self.advance()
            if result.status is not NavigationStatus.OK:
                return

    # ── Internals ────────────────────────────────────────────────

    def _move_to(self, target: int, *, past_end: NavigationStatus) -> NavigationResult:
        self._session.touch()
        if target < len(self._store):
            self._position = target
            return self._result(NavigationStatus.OK)
        if not self._store.sealed:
            found = self._store.wait_for(
                target,
                timeout=self._session.config.limits.time_limit_s,
                cancel_event=self._session.cancel_event,
            )
            if found:
                self._position = target
                return self._result(NavigationStatus.OK)
            if not self._store.sealed:
                status = (
                    NavigationStatus.CANCELLED
                    if self._session.cancel_event.is_set()
                    else NavigationStatus.TIMED_OUT
                )
                logger.debug("Wait for step %d ended: %s", target, status.value)
                return self._result(status)
        return self._result(past_end)

    def _result(self, status: NavigationStatus) -> NavigationResult:
        step = None
        if self._position < len(self._store):
            step = self._store.get(self._position)
        return NavigationResult(
            status=status,
            position=self._position,
            step=step,
            summary=self._store.summary,
        )
