"""Interrupt guard."""
from exam_session.guard import InterruptGuard
from exam_session.models import SessionStatus


class Harness:
    def __init__(self, status=SessionStatus.IN_PROGRESS):
        self.status = status
        self.saves = 0
        self.left = 0
        self.guard = InterruptGuard(lambda: self.status, self.save)

    def save(self):
        self.saves += 1

    def leave(self):
        self.left += 1


def test_holds_leave_while_in_progress():
    h = Harness()
    assert h.guard.armed
    assert h.guard.intercept(h.leave, restore_state="Exam") is False
    assert h.left == 0
    assert h.guard.pending is not None


def test_confirm_saves_then_leaves():
    h = Harness()
    h.guard.intercept(h.leave)
    assert h.guard.confirm() is True
    assert (h.saves, h.left) == (1, 1)
    assert h.guard.pending is None
    assert h.guard.confirm() is False


def test_decline_restores_navigation_state():
    h = Harness()
    h.guard.intercept(h.leave, restore_state={"page": "Exam", "index": 3})
    assert h.guard.decline() == {"page": "Exam", "index": 3}
    assert h.left == 0
    assert h.saves == 0
    assert h.guard.decline() is None


def test_passes_through_when_not_in_progress():
    for status in (SessionStatus.NOT_STARTED, SessionStatus.COMPLETED, SessionStatus.CANCELLED):
        h = Harness(status)
        assert h.guard.intercept(h.leave) is True
        assert h.left == 1
        assert h.saves == 0


def test_confirm_after_completion_skips_save():
    h = Harness()
    h.guard.intercept(h.leave)
    h.status = SessionStatus.COMPLETED
    h.guard.confirm()
    assert (h.saves, h.left) == (0, 1)
