"""Tests for Navigator — cursor movement and boundary statuses."""

import threading

import pytest

from steptrace.config import ResourceLimits, SessionConfig
from steptrace.navigation import NavigationStatus, Navigator
from steptrace.session import Session
from steptrace.trace_types import OperationKind, TerminationReason

FIVE_STEPS = "a = 1\nb = 2\nc = 3\nd = 4\ne = 5\n"
FOREVER = "x = 0\nwhile True:\n    x = x + 1\n"


def _finished(source: str = FIVE_STEPS) -> Navigator:
    session = Session.create(source, "python").start()
    session.wait(5.0)
    return Navigator(session)


def _running(step_interval_s: float = 0.05, time_limit_s: float = 30.0) -> Navigator:
    config = SessionConfig(
        limits=ResourceLimits(time_limit_s=time_limit_s), step_interval_s=step_interval_s
    )
    return Navigator(Session.create(FOREVER, "python", config).start())


class TestMovement:
    def test_current_starts_at_first_step(self):
        result = _finished().current()

        assert result.status == NavigationStatus.OK
        assert result.position == 0
        assert result.step.sequence == 0
        assert result.step.line == 1

    def test_advance_moves_forward(self):
        nav = _finished()

        result = nav.advance(2)

        assert result.status == NavigationStatus.OK
        assert result.step.sequence == 2
        assert nav.position == 2

    def test_advance_past_end_keeps_cursor(self):
        nav = _finished()
        nav.seek(4)

        result = nav.advance()

        assert result.status == NavigationStatus.END_OF_TRACE
        assert result.position == 4
        assert result.step.sequence == 4
        assert result.summary.reason == TerminationReason.COMPLETED

    def test_retreat_before_start_keeps_cursor(self):
        nav = _finished()

        result = nav.retreat()

        assert result.status == NavigationStatus.START_OF_TRACE
        assert result.position == 0

    def test_retreat_moves_back(self):
        nav = _finished()
        nav.seek(3)

        result = nav.retreat(2)

        assert result.status == NavigationStatus.OK
        assert result.step.sequence == 1

    def test_seek_out_of_range(self):
        nav = _finished()
        nav.seek(2)

        assert nav.seek(5).status == NavigationStatus.OUT_OF_RANGE
        assert nav.seek(-1).status == NavigationStatus.OUT_OF_RANGE
        assert nav.position == 2

    def test_reset(self):
        nav = _finished()
        nav.seek(3)

        result = nav.reset()

        assert result.position == 0
        assert result.step.sequence == 0

    @pytest.mark.parametrize("method", ["advance", "retreat"])
    def test_non_positive_counts_rejected(self, method):
        with pytest.raises(ValueError):
            getattr(_finished(), method)(0)

    def test_empty_trace(self):
        result = _finished("def f():\n    return 1\n").current()

        assert result.status == NavigationStatus.END_OF_TRACE
        assert result.step is None

    def test_steps_match_store(self):
        nav = _finished()
        store = nav._session.store

        for seq in range(5):
            assert nav.seek(seq).step == store.get(seq)

    def test_navigation_never_reruns(self):
        nav = _finished()
        before = len(nav._session.store)

        nav.seek(4)
        nav.reset()
        nav.advance(3)

        assert len(nav._session.store) == before


class TestWhileRunning:
    def test_advance_waits_for_next_step(self):
        nav = _running(step_interval_s=0.02)
        try:
            result = nav.seek(5)

            assert result.status == NavigationStatus.OK
            assert result.step.sequence == 5
        finally:
            nav.cancel()

    def test_cancel_releases_waiting_reader(self):
        nav = _running(step_interval_s=1.0)
        other = Navigator(nav._session)
        timer = threading.Timer(0.1, other.cancel)
        timer.start()
        try:
            result = nav.seek(1000)
        finally:
            timer.join()

        assert result.status in (NavigationStatus.CANCELLED, NavigationStatus.OUT_OF_RANGE)
        nav._session.wait(5.0)
        assert nav._session.summary.reason == TerminationReason.CANCELLED

    def test_set_speed_validates(self):
        nav = _running()
        try:
            assert nav.set_speed(2.0).status == NavigationStatus.OK
            assert nav._session.speed == 2.0
            with pytest.raises(ValueError):
                nav.set_speed(10.0)
        finally:
            nav.cancel()


class TestPlay:
    def test_play_yields_every_step(self):
        nav = _finished()

        steps = list(nav.play())

        assert [s.sequence for s in steps] == [0, 1, 2, 3, 4]
        assert all(s.operation == OperationKind.ASSIGN for s in steps)

    def test_play_from_cursor(self):
        nav = _finished()
        nav.seek(3)

        assert [s.sequence for s in nav.play()] == [3, 4]

    def test_play_stops_on_cancel(self):
        nav = _running(step_interval_s=0.01)
        seen = []
        for step in nav.play():
            seen.append(step.sequence)
            if len(seen) == 3:
                nav.cancel()

        assert seen[:3] == [0, 1, 2]
        assert nav._session.wait(5.0)

    def test_pause_blocks_until_resume(self):
        nav = _finished()
        player = nav.play()
        assert next(player).sequence == 0

        nav.pause()
        threading.Timer(0.1, nav.resume).start()

        assert next(player).sequence == 1
