"""Session Supervisor — admission, lookup, close and idle reaping."""

from __future__ import annotations

import logging
import threading
import time

from .errors import AdmissionDeniedError, SessionNotFoundError
from .config import SessionRequest
from .navigation import Navigator
from .program import compile_program
from .session import Session
from . import constants

logger = logging.getLogger(__name__)


class SessionSupervisor:
    """Creates sessions and caps how many run at once.

    The admission counter is the only state shared between sessions: a
    slot is taken before the worker starts and given back when the
    session reaches a terminal state.
    """

    def __init__(
        self,
        max_sessions: int = constants.DEFAULT_MAX_SESSIONS,
        idle_timeout_s: float = constants.DEFAULT_IDLE_TIMEOUT_S,
    ):
        self.max_sessions = max_sessions
        self.idle_timeout_s = idle_timeout_s
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}
        self._running = 0

    @property
    def running_count(self) -> int:
        with self._lock:
            return self._running

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(self, request: SessionRequest) -> Session:
        """Validate, admit and start one session.

        Raises ``SecurityPolicyError`` for inadmissible source and
        ``AdmissionDeniedError`` when every slot is taken.
        """
        config = request.to_config()
        program = compile_program(
            request.source, request.language, max_source_bytes=config.max_source_bytes
        )
        session = Session(
            program,
            config,
            source=request.source,
            entry_point=request.entry_point,
            arguments=request.arguments,
            inputs=request.inputs,
            on_terminal=self._release,
        )
        with self._lock:
            if self._running >= self.max_sessions:
                logger.info("Admission denied: %d sessions running", self._running)
                raise AdmissionDeniedError(
                    f"{self._running} of {self.max_sessions} sessions already running"
                )
            self._running += 1
            self._sessions[session.id] = session
        session.start()
        return session

    def get(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"no session {session_id}")
        session.touch()
        return session

    def navigator(self, session_id: str) -> Navigator:
        return Navigator(self.get(session_id))

    def close(self, session_id: str):
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(f"no session {session_id}")
        session.close()
        logger.info("Session %s closed", session_id)

    def reap_idle(self, now: float | None = None) -> list[str]:
        """Close every session untouched for longer than the idle timeout."""
        now = time.monotonic() if now is None else now
        with self._lock:
            idle = [
                session
                for session in self._sessions.values()
                if session.idle_for(now) > self.idle_timeout_s
            ]
            for session in idle:
                del self._sessions[session.id]
        for session in idle:
            logger.info("Reaping idle session %s", session.id)
            session.close()
        return [session.id for session in idle]

    def shutdown(self):
        with self._lock:
            ids = list(self._sessions)
        for sid in ids:
            self.close(sid)

    def _release(self, session: Session):
        with self._lock:
            self._running -= 1
        logger.debug("Released admission slot of session %s", session.id)
