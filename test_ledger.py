"""Answer ledger."""
import pytest

from exam_session.errors import InvalidAnswer
from exam_session.ledger import AnswerLedger
from exam_session.models import Answer, Letter


def test_last_write_wins():
    ledger = AnswerLedger(["q1", "q2"])
    ledger.set_answer("q1", "A")
    ledger.set_answer("q1", "c")
    assert ledger.get_answer("q1") is Letter.C
    assert ledger.get_answer("q2") is None
    assert ledger.answered_count() == 1


def test_rejects_unknown_letter_and_question():
    ledger = AnswerLedger(["q1"])
    with pytest.raises(InvalidAnswer):
        ledger.set_answer("q1", "E")
    with pytest.raises(InvalidAnswer):
        ledger.set_answer("other", "A")
    assert len(ledger) == 0


def test_time_accumulates_without_an_answer():
    ledger = AnswerLedger(["q1"])
    ledger.add_time("q1", 1)
    ledger.add_time("q1", 1)
    assert ledger.time_spent("q1") == 2
    assert ledger.get_answer("q1") is None
    assert "q1" in ledger
    assert ledger.answered_count() == 0


def test_entries_are_copies():
    ledger = AnswerLedger()
    ledger.set_answer("q1", "B")
    entry = ledger.entries()[0]
    entry.chosen = Letter.D
    assert ledger.get_answer("q1") is Letter.B


def test_restore_drops_questions_no_longer_served():
    answers = [Answer("q1", Letter.A, 4), Answer("gone", Letter.B, 2)]
    ledger = AnswerLedger.restore(answers, ["q1", "q2"])
    assert ledger.get_answer("q1") is Letter.A
    assert ledger.time_spent("q1") == 4
    assert "gone" not in ledger
