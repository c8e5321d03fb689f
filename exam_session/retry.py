"""
Review and retry-mode correction for completed sessions.

Review replays the exact question list a session served. Retry-mode
correction is the only flow allowed to change attempts after completion: it
re-derives `is_correct` for corrected answers and re-aggregates the session
score from every attempt.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Mapping

from .assembler import QuestionSet, QuestionSetAssembler
from .config import TABLE_ATTEMPTS, TABLE_SESSIONS
from .errors import InvalidAnswer, SessionNotActive
from .models import Attempt, SessionRecord, SessionStatus, parse_letter, utc_now_iso
from .scoring import percent_score
from .store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Review:
    session: SessionRecord
    question_set: QuestionSet
    attempts: Mapping[str, Attempt]

    def attempt_for(self, question_id: str):
        return self.attempts.get(question_id)


def load_session(store: RecordStore, session_id: str) -> SessionRecord:
    rows = store.get(TABLE_SESSIONS, {"id": session_id})
    if not rows:
        raise LookupError(f"Session {session_id} not found")
    return SessionRecord.from_row(rows[0])


def load_review(store: RecordStore, session_id: str) -> Review:
    """Completed session with its served questions (in served order) and attempts."""
    session = load_session(store, session_id)
    if session.status is not SessionStatus.COMPLETED:
        raise SessionNotActive(f"Session {session_id} is {session.status.value}, not completed")
    question_set = QuestionSetAssembler(store).replay(
        session.exam_set_id, session.served_question_ids, session.selected_parts
    )
    attempts = {a.question_id: a for a in (Attempt.from_row(r) for r in store.get(TABLE_ATTEMPTS, {"session_id": session_id}))}
    return Review(session, question_set, attempts)


def apply_corrections(store: RecordStore, session_id: str, corrections: Mapping[str, str]) -> SessionRecord:
    """
    Apply retry-mode answers to a completed session.

    Args:
        store: record store
        session_id: completed session to correct
        corrections: question_id -> new letter

    Returns:
        The session with re-aggregated score and correct_answers
    """
    review = load_review(store, session_id)
    session = review.session
    attempts: Dict[str, Attempt] = dict(review.attempts)

    for question_id, raw_letter in corrections.items():
        question = review.question_set.by_id(question_id)
        if question is None:
            raise InvalidAnswer(f"Question {question_id} was not served in session {session_id}")
        try:
            letter = parse_letter(raw_letter)
        except ValueError:
            raise InvalidAnswer(f"{raw_letter!r} is not an answer letter") from None
        if letter not in question.letters:
            raise InvalidAnswer(f"{letter.value} is not offered in part {question.part}")

        is_correct = letter == question.correct_choice
        existing = attempts.get(question_id)
        row = {"user_answer": letter.value, "is_correct": is_correct, "answered_at": utc_now_iso()}
        if existing is not None and existing.id is not None:
            stored = store.update(TABLE_ATTEMPTS, existing.id, row)
        else:
            stored = store.insert(TABLE_ATTEMPTS, {"session_id": session_id, "question_id": question_id, "time_spent": 0, **row})
        attempts[question_id] = Attempt.from_row(stored)

    total = len(review.question_set)
    correct = sum(1 for q in review.question_set if attempts.get(q.id) and attempts[q.id].is_correct)
    score = percent_score(correct, total)
    store.update(
        TABLE_SESSIONS,
        session_id,
        {"correct_answers": correct, "score": score, "total_questions": total, "updated_at": utc_now_iso()},
    )
    session.correct_answers = correct
    session.score = score
    session.total_questions = total
    logger.info(f"Retry corrections applied to session {session_id}: {correct}/{total} ({score}%)")
    return session
