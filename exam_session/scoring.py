"""
Submission & Scoring Engine.

Scoring is a pure function of the served questions and the ledger, so it can
be repeated safely. Submission writes the completed session first, then one
attempt per served question; if the attempts fail the score is already on
record and `AttemptPersistenceFailed` carries the result for a retry.
"""
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence, Tuple

from .autosave import AutoSaveManager
from .config import TABLE_ATTEMPTS, TABLE_SESSIONS
from .errors import AlreadySubmitted, AttemptPersistenceFailed, NoQuestionsToScore, SubmissionInProgress
from .ledger import AnswerLedger
from .models import Answer, Attempt, Question, SessionRecord, SessionStatus, utc_now_iso
from .store import RecordStore
from .timer import TimerController

logger = logging.getLogger(__name__)


def percent_score(correct: int, total: int) -> int:
    """Whole-number percentage, rounded half up."""
    if total <= 0:
        raise NoQuestionsToScore("Cannot score a session with no questions")
    value = Decimal(100) * Decimal(correct) / Decimal(total)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class ScoreResult:
    answers: Tuple[Answer, ...]
    correct_answers: int
    total_questions: int
    score: int
    time_spent_seconds: int

    @property
    def incorrect_or_unanswered(self) -> int:
        return self.total_questions - self.correct_answers

    @property
    def answered(self) -> int:
        return sum(1 for a in self.answers if a.chosen is not None)


def score_answers(questions: Sequence[Question], ledger: AnswerLedger, time_spent_seconds: int = 0) -> ScoreResult:
    """
    Score every served question against the ledger. Unanswered counts as incorrect.

    Raises:
        NoQuestionsToScore: `questions` is empty
    """
    if not questions:
        raise NoQuestionsToScore("Cannot score a session with no questions")
    answers = []
    for question in questions:
        chosen = ledger.get_answer(question.id)
        answers.append(
            Answer(
                question_id=question.id,
                chosen=chosen,
                time_spent_seconds=ledger.time_spent(question.id),
                is_correct=chosen is not None and chosen == question.correct_choice,
            )
        )
    correct = sum(1 for a in answers if a.is_correct)
    return ScoreResult(
        answers=tuple(answers),
        correct_answers=correct,
        total_questions=len(questions),
        score=percent_score(correct, len(questions)),
        time_spent_seconds=time_spent_seconds,
    )


class SubmissionEngine:
    """Turns the final ledger and timer state into a completed session plus attempt rows."""

    def __init__(self, store: RecordStore, autosave: AutoSaveManager):
        self.store = store
        self.autosave = autosave
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def submit(
        self,
        session: SessionRecord,
        questions: Sequence[Question],
        ledger: AnswerLedger,
        timer: Optional[TimerController] = None,
    ) -> ScoreResult:
        """
        Score and persist a session.

        Returns:
            ScoreResult with per-question answers

        Raises:
            AlreadySubmitted: session is already completed
            SubmissionInProgress: another submit for this engine has not finished
            NoQuestionsToScore: nothing was served
            AttemptPersistenceFailed: session saved as completed, attempts not (retry with `persist_attempts`)
            RecordStoreError: session row not completed; progress was snapshotted and the session stays resumable
        """
        if session.status is SessionStatus.COMPLETED:
            raise AlreadySubmitted(session.id)
        if self._in_flight:
            raise SubmissionInProgress(session.id)

        self._in_flight = True
        try:
            # Stop both recurring tasks before anything is written
            if timer is not None:
                timer.stop()
            self.autosave.stop()

            time_spent = timer.time_spent if timer is not None else 0
            result = score_answers(questions, ledger, time_spent)

            completed_at = utc_now_iso()
            try:
                self.store.update(
                    TABLE_SESSIONS,
                    session.id,
                    {
                        "status": SessionStatus.COMPLETED.value,
                        "completed_at": completed_at,
                        "score": result.score,
                        "correct_answers": result.correct_answers,
                        "total_questions": result.total_questions,
                        "time_spent": result.time_spent_seconds,
                    },
                )
            except Exception as e:
                # Still in progress on the server: keep the final answers resumable
                logger.error(f"Completing session {session.id} failed, saving progress for resume: {e}")
                self.autosave.save(reason="submit-failed")
                raise
            session.status = SessionStatus.COMPLETED
            session.completed_at = completed_at
            session.score = result.score
            session.correct_answers = result.correct_answers
            session.total_questions = result.total_questions
            session.time_spent_seconds = result.time_spent_seconds
            logger.info(
                f"Session {session.id} completed: {result.correct_answers}/{result.total_questions} ({result.score}%)"
            )

            self.persist_attempts(session, result)
            self.autosave.purge(session.id)
            return result
        finally:
            self._in_flight = False

    def persist_attempts(self, session: SessionRecord, result: ScoreResult) -> int:
        """
        Insert the attempts not yet stored for this session. Safe to call again after a failure.

        Returns:
            Number of rows inserted
        """
        try:
            existing = {str(row["question_id"]) for row in self.store.get(TABLE_ATTEMPTS, {"session_id": session.id})}
            answered_at = utc_now_iso()
            inserted = 0
            for answer in result.answers:
                if answer.question_id in existing:
                    continue
                self.store.insert(TABLE_ATTEMPTS, Attempt.from_answer(session.id, answer, answered_at).to_row())
                inserted += 1
        except Exception as e:
            logger.error(f"Error saving attempts for session {session.id}: {e}")
            raise AttemptPersistenceFailed(session.id, result, e) from e
        logger.info(f"Saved {inserted} attempts for session {session.id}")
        return inserted
