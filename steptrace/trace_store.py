"""Trace Store — append-only, sealable log of committed Steps.

One writer (the session worker) appends; any number of readers fetch by
sequence or iterate ranges while the trace is still growing.  Steps are
kept in canonical JSON form so every read hands out a fresh copy that a
reader cannot use to alter what others see.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterator

from .errors import SequenceGapError, StepNotFoundError, TraceSealedError
from .trace_types import Step, TraceSummary

logger = logging.getLogger(__name__)


class TraceStore:
    def __init__(self):
        self._encoded: list[str] = []
        self._summary: TraceSummary | None = None
        self._changed = threading.Condition()

    # ── Writer side ──────────────────────────────────────────────

    def append(self, step: Step):
        with self._changed:
            if self._summary is not None:
                raise TraceSealedError(f"trace sealed; cannot append step {step.sequence}")
            expected = len(self._encoded)
            if step.sequence != expected:
                raise SequenceGapError(f"expected step {expected}, got {step.sequence}")
            self._encoded.append(step.model_dump_json())
            self._changed.notify_all()

    def seal(self, summary: TraceSummary):
        with self._changed:
            if self._summary is not None:
                raise TraceSealedError("trace already sealed")
            self._summary = summary.model_copy(update={"total_steps": len(self._encoded)})
            logger.info(
                "Trace sealed: %s after %d steps", summary.reason.value, len(self._encoded)
            )
            self._changed.notify_all()

    # ── Reader side ──────────────────────────────────────────────

    def __len__(self) -> int:
        with self._changed:
            return len(self._encoded)

    @property
    def sealed(self) -> bool:
        with self._changed:
            return self._summary is not None

    @property
    def summary(self) -> TraceSummary | None:
        with self._changed:
            return self._summary

    def get(self, sequence: int) -> Step:
        with self._changed:
            if not 0 <= sequence < len(self._encoded):
                raise StepNotFoundError(f"no step {sequence} (have {len(self._encoded)})")
            encoded = self._encoded[sequence]
        return Step.model_validate_json(encoded)

    def range(self, start: int = 0, stop: int | None = None) -> StepRange:
        """Lazy, restartable view over steps ``[start, stop)``.

        ``stop`` is resolved against the committed length each time the
        view is iterated, so a view taken early sees later commits.
        """
        return StepRange(self, start, stop)

    def wait_for(
        self,
        sequence: int,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> bool:
        """Block until *sequence* is committed or the trace is sealed.

        Returns ``True`` when the step exists.  ``False`` means the trace
        sealed without it, the timeout passed, or *cancel_event* was set.
        """

        def ready() -> bool:
            return (
                sequence < len(self._encoded)
                or self._summary is not None
                or (cancel_event is not None and cancel_event.is_set())
            )

        with self._changed:
            self._changed.wait_for(ready, timeout)
            return sequence < len(self._encoded)

    def wake(self):
        """Wake every waiter so it re-checks its cancel event."""
        with self._changed:
            self._changed.notify_all()


class StepRange:
    def __init__(self, store: TraceStore, start: int, stop: int | None):
        self._store = store
        self._start = max(start, 0)
        self._stop = stop

    def __iter__(self) -> Iterator[Step]:
        sequence = self._start
        while True:
            limit = len(self._store) if self._stop is None else min(self._stop, len(self._store))
            if sequence >= limit:
                return
            yield self._store.get(sequence)
            sequence += 1
