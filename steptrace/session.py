"""Session — one guest execution, end to end, on its own worker thread."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Any, Callable

from .config import SessionConfig, validate_speed
from .errors import SessionStateError
from .governor import Deny, ResourceUsage, authorize
from .machine import MachineStatus, TracingMachine
from .program import CompiledProgram, compile_program
from .trace_store import TraceStore
from .trace_types import (
    FaultInfo,
    LimitKind,
    SessionState,
    TerminationReason,
    TraceSummary,
)
from . import constants

logger = logging.getLogger(__name__)

_TERMINAL = frozenset()

# Valid state transitions.
_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.PENDING: frozenset({SessionState.RUNNING, SessionState.CANCELLED}),
    SessionState.RUNNING: frozenset(
        {
            SessionState.COMPLETED,
            SessionState.FAILED,
            SessionState.LIMIT_EXCEEDED,
            SessionState.CANCELLED,
        }
    ),
    SessionState.COMPLETED: _TERMINAL,
    SessionState.FAILED: _TERMINAL,
    SessionState.LIMIT_EXCEEDED: _TERMINAL,
    SessionState.CANCELLED: _TERMINAL,
}

_MACHINE_OUTCOMES = {
    MachineStatus.COMPLETED: TerminationReason.COMPLETED,
    MachineStatus.FAILED: TerminationReason.FAILED,
}


class Session:
    """Owns one interpreter, one governor budget and one Trace Store.

    The trace store outlives the session: closing a session stops the
    worker but readers holding the store keep their access.
    """

    def __init__(
        self,
        program: CompiledProgram,
        config: SessionConfig | None = None,
        *,
        source: str = "",
        entry_point: str | None = None,
        arguments: list[Any] | tuple = (),
        inputs: dict[str, Any] | None = None,
        on_terminal: Callable[[Session], None] | None = None,
    ):
        self.id = uuid.uuid4().hex
        self.source = source
        self.language = program.language
        self.config = config or SessionConfig()
        self.store = TraceStore()
        self.state = SessionState.PENDING
        self.last_activity = time.monotonic()

        self._machine = TracingMachine(
            program.cfg,
            program.registry,
            language=program.language,
            entry_point=entry_point,
            arguments=arguments,
            inputs=inputs,
            seed=self.config.seed,
        )
        self._speed = self.config.speed
        self._usage = ResourceUsage()
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._thread: threading.Thread | None = None
        self._on_terminal = on_terminal

    @classmethod
    def create(
        cls,
        source: str,
        language: str = "python",
        config: SessionConfig | None = None,
        **kwargs: Any,
    ) -> Session:
        """Validate and compile *source*, then build a PENDING session."""
        config = config or SessionConfig()
        program = compile_program(source, language, max_source_bytes=config.max_source_bytes)
        return cls(program, config, source=source, **kwargs)

    # ── Lifecycle ────────────────────────────────────────────────

    def _transition(self, target: SessionState):
        if target not in _TRANSITIONS[self.state]:
            raise SessionStateError(f"{self.state.value} → {target.value}")
        self.state = target

    def start(self) -> Session:
        with self._lock:
            self._transition(SessionState.RUNNING)
        self._thread = threading.Thread(
            target=self._run, name=f"steptrace-session-{self.id[:8]}", daemon=True
        )
        self._thread.start()
        logger.info("Session %s started (%s)", self.id, self.language)
        return self

    def cancel(self) -> bool:
        """Request cancellation; ``False`` when the session already ended."""
        with self._lock:
            if self.state.is_terminal:
                return False
            if self.state == SessionState.PENDING:
                self._transition(SessionState.CANCELLED)
                pending = True
            else:
                pending = False
        self._cancel.set()
        if pending:
            self.store.seal(self._summary(TerminationReason.CANCELLED))
            logger.info("Session %s cancelled before start", self.id)
            self._notify_terminal()
        else:
            self.store.wake()
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the worker finishes; ``True`` when it has."""
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            return not thread.is_alive()
        return self.state.is_terminal

    def close(self, timeout: float = 1.0):
        self.cancel()
        self.wait(timeout)

    # ── Pacing and activity ──────────────────────────────────────

    @property
    def speed(self) -> float:
        with self._lock:
            return self._speed

    def set_speed(self, speed: float):
        validate_speed(speed)
        with self._lock:
            self._speed = speed

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel

    @property
    def summary(self) -> TraceSummary | None:
        return self.store.summary

    def touch(self):
        self.last_activity = time.monotonic()

    def idle_for(self, now: float | None = None) -> float:
        return (time.monotonic() if now is None else now) - self.last_activity

    # ── Worker ───────────────────────────────────────────────────

    def _run(self):
        machine = self._machine
        limits = self.config.limits
        usage = self._usage
        started = time.perf_counter()
        paused = 0.0
        try:
            while True:
                if self._cancel.is_set():
                    self._finish(TerminationReason.CANCELLED)
                    return
                step = machine.next_step(constants.INSTRUCTION_BUDGET)
                usage.elapsed_s = time.perf_counter() - started - paused
                usage.observe_memory(machine.memory_estimate)
                usage.steps_emitted = len(self.store)
                if step is None and machine.halted:
                    self._finish(_MACHINE_OUTCOMES[machine.status], fault=machine.fault)
                    return
                decision = authorize(usage, limits, committing=step is not None)
                if isinstance(decision, Deny):
                    logger.info("Session %s denied: %s", self.id, decision.reason)
                    self._finish(TerminationReason.LIMIT_EXCEEDED, limit=decision.limit)
                    return
                if step is None:
                    continue
                self.store.append(step)
                delay = self.config.step_interval_s / self.speed
                if delay > 0:
                    t0 = time.perf_counter()
                    self._cancel.wait(delay)
                    paused += time.perf_counter() - t0
        except Exception as exc:
            logger.exception("Internal engine fault in session %s", self.id)
            fault = FaultInfo(kind=type(exc).__name__, message=str(exc), internal=True)
            if not self.store.sealed:
                self._finish(TerminationReason.FAILED, fault=fault)

    def _summary(
        self,
        reason: TerminationReason,
        fault: FaultInfo | None = None,
        limit: LimitKind | None = None,
    ) -> TraceSummary:
        machine = self._machine
        return TraceSummary(
            reason=reason,
            return_value=machine.return_value() if reason == TerminationReason.COMPLETED else None,
            total_steps=len(self.store),
            elapsed_ms=int(self._usage.elapsed_s * 1000),
            console=machine.console,
            fault=fault,
            limit=limit,
        )

    def _finish(
        self,
        reason: TerminationReason,
        *,
        fault: FaultInfo | None = None,
        limit: LimitKind | None = None,
    ):
        summary = self._summary(reason, fault, limit)
        # cancel() observes the seal and the state change together
        with self._lock:
            try:
                self.store.seal(summary)
            finally:
                self._transition(SessionState.from_reason(reason))
        logger.info("Session %s finished: %s", self.id, reason.value)
        self._notify_terminal()

    def _notify_terminal(self):
        if self._on_terminal is not None:
            self._on_terminal(self)
