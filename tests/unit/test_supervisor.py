"""Tests for SessionSupervisor — admission cap, lookup and idle reaping."""

import pytest

from steptrace.config import SessionRequest
from steptrace.errors import AdmissionDeniedError, SecurityPolicyError, SessionNotFoundError
from steptrace.navigation import Navigator
from steptrace.supervisor import SessionSupervisor
from steptrace.trace_types import SessionState

FOREVER = "x = 0\nwhile True:\n    x = x + 1\n"


def _request(source: str = "x = 1\n", **kwargs) -> SessionRequest:
    return SessionRequest(source=source, **kwargs)


def _slow_request() -> SessionRequest:
    return _request(FOREVER, step_interval_s=0.05, time_limit_s=30.0)


@pytest.fixture
def supervisor():
    sup = SessionSupervisor(max_sessions=2, idle_timeout_s=60.0)
    yield sup
    sup.shutdown()


class TestAdmission:
    def test_create_starts_session(self, supervisor):
        session = supervisor.create(_request())
        session.wait(5.0)

        assert session.state == SessionState.COMPLETED
        assert supervisor.get(session.id) is session

    def test_cap_denies_extra_sessions(self, supervisor):
        supervisor.create(_slow_request())
        supervisor.create(_slow_request())

        with pytest.raises(AdmissionDeniedError):
            supervisor.create(_slow_request())
        assert supervisor.running_count == 2
        assert len(supervisor) == 2

    def test_slot_released_on_completion(self, supervisor):
        first = supervisor.create(_request())
        first.wait(5.0)
        second = supervisor.create(_request())
        second.wait(5.0)

        assert supervisor.running_count == 0
        assert len(supervisor) == 2

    def test_slot_released_on_cancel(self, supervisor):
        a = supervisor.create(_slow_request())
        supervisor.create(_slow_request())
        a.cancel()
        a.wait(5.0)

        supervisor.create(_slow_request())
        assert supervisor.running_count == 2

    def test_rejected_program_takes_no_slot(self, supervisor):
        with pytest.raises(SecurityPolicyError):
            supervisor.create(_request("import os\n"))

        assert supervisor.running_count == 0
        assert len(supervisor) == 0

    def test_sessions_are_isolated(self, supervisor):
        a = supervisor.create(_request("x = 1\n"))
        b = supervisor.create(_request("x = 2\n"))
        a.wait(5.0)
        b.wait(5.0)

        assert a.store.get(0).variables["x"]["value"] == 1
        assert b.store.get(0).variables["x"]["value"] == 2


class TestLookup:
    def test_unknown_id(self, supervisor):
        with pytest.raises(SessionNotFoundError):
            supervisor.get("nope")

    def test_navigator_for_session(self, supervisor):
        session = supervisor.create(_request())

        assert isinstance(supervisor.navigator(session.id), Navigator)

    def test_close_removes_session(self, supervisor):
        session = supervisor.create(_slow_request())
        supervisor.close(session.id)

        assert session.state == SessionState.CANCELLED
        with pytest.raises(SessionNotFoundError):
            supervisor.get(session.id)
        with pytest.raises(SessionNotFoundError):
            supervisor.close(session.id)

    def test_store_outlives_close(self, supervisor):
        session = supervisor.create(_request("a = 1\nb = 2\n"))
        session.wait(5.0)
        store = session.store
        supervisor.close(session.id)

        assert len(store) == 2
        assert store.sealed


class TestReaping:
    def test_idle_sessions_are_reaped(self, supervisor):
        session = supervisor.create(_slow_request())

        reaped = supervisor.reap_idle(now=session.last_activity + 61.0)

        assert reaped == [session.id]
        assert len(supervisor) == 0
        assert session.state == SessionState.CANCELLED

    def test_active_sessions_survive(self, supervisor):
        session = supervisor.create(_request())
        session.wait(5.0)

        assert supervisor.reap_idle(now=session.last_activity + 10.0) == []
        assert len(supervisor) == 1

    def test_get_counts_as_activity(self, supervisor):
        session = supervisor.create(_request())
        session.last_activity -= 120.0
        supervisor.get(session.id)

        assert supervisor.reap_idle() == []
