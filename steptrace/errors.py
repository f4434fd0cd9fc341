"""Engine exceptions raised across component boundaries.

Guest faults and limit breaches are not here: they are expected outcomes
and travel as data (``GuestFault``, ``TraceSummary``).
"""

from __future__ import annotations


class SteptraceError(Exception):
    """Base class for engine errors."""


class InvalidConfigError(SteptraceError, ValueError):
    """A limit or session setting is out of range."""


class SecurityPolicyError(SteptraceError):
    """The guest program uses constructs the sandbox does not allow."""

    def __init__(self, violations: list):
        self.violations = list(violations)
        summary = "; ".join(str(v) for v in self.violations[:5])
        if len(self.violations) > 5:
            summary += f"; … {len(self.violations) - 5} more"
        super().__init__(f"Guest program rejected: {summary}")


class TraceSealedError(SteptraceError):
    """A step was appended to a sealed trace."""


class SequenceGapError(SteptraceError):
    """A step's sequence number does not follow the last committed step."""


class StepNotFoundError(SteptraceError, LookupError):
    """No committed step has the requested sequence number."""


class AdmissionDeniedError(SteptraceError):
    """The supervisor is already running its maximum number of sessions."""


class SessionNotFoundError(SteptraceError, LookupError):
    """No live session has the requested id."""


class SessionStateError(SteptraceError):
    """A session lifecycle transition that the state machine does not allow."""
