#!/usr/bin/env python3
"""
Integration test: full exam session workflow on in-memory stores.
Demonstrates:
1. Part-filtered assembly with passage widening
2. Answering, exit and resume
3. Submission, review and retry corrections
"""
import logging

from exam_session.autosave import snapshot_key
from exam_session.config import TABLE_ATTEMPTS
from exam_session.models import SessionStatus
from exam_session.retry import apply_corrections, load_review
from exam_session.session import ExamSession
from exam_session.timer import ManualScheduler

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


def test_exam_session_workflow(store, snapshots, toeic_set):
    """Open, answer, leave, resume, submit, review, correct."""

    logger.info("=" * 70)
    logger.info("Exam Session - Integration Test")
    logger.info("=" * 70)

    # 1. Open a part 3 session; the mixed passage pulls its part 4 question in
    scheduler = ManualScheduler()
    session = ExamSession(store, snapshots, scheduler)
    assert session.open("user-1", toeic_set, parts=[3]) is None
    ids = session.question_set.ids
    logger.info(f"\n✓ Served {len(ids)} questions: {ids}")
    assert ids == ["q-3-1", "q-3-2", "q-3-3", "q-3-4", "q-4-1"]
    assert session.timer.time_remaining == 30 * 60

    # 2. Answer the first three correctly, then leave
    for question in session.question_set.questions[:3]:
        session.answer(question.correct_choice)
        scheduler.advance(20)
        session.next()
    assert session.autosave.saves == 2
    session.request_exit(lambda: None)
    session.guard.confirm()
    session.suspend()
    logger.info(f"✓ Left at question {session.current_index + 1} with {session.ledger.answered_count()} answered")

    # 3. Resume on a fresh page
    resumed = ExamSession(store, snapshots, ManualScheduler())
    pending = resumed.open("user-1", toeic_set, parts=[3])
    assert pending.answered_count == 3
    resumed.resume()
    assert resumed.current_index == 3
    assert resumed.timer.time_remaining == 30 * 60 - 60
    logger.info(f"✓ Resumed with {resumed.progress()['time_display']} left")

    # 4. Answer one wrong and submit
    resumed.answer("A")  # q-3-4 expects D
    result = resumed.submit()
    logger.info(f"✓ Score: {result.correct_answers}/{result.total_questions} ({result.score}%)")
    assert result.correct_answers == 3
    assert result.score == 60
    assert resumed.status is SessionStatus.COMPLETED
    assert snapshot_key(resumed.record.id) not in snapshots.data
    assert len(store.rows(TABLE_ATTEMPTS)) == 5

    # 5. Review and correct in retry mode
    review = load_review(store, resumed.record.id)
    wrong = [q.id for q in review.question_set if not review.attempt_for(q.id).is_correct]
    assert wrong == ["q-3-4", "q-4-1"]
    corrected = apply_corrections(store, resumed.record.id, {"q-3-4": "D", "q-4-1": "A"})
    logger.info(f"✓ After retry: {corrected.correct_answers}/{corrected.total_questions} ({corrected.score}%)")
    assert corrected.score == 100
