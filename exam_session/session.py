"""
Exam session orchestration: one live, resumable, time-bounded attempt.

Wires the question set, timer, answer ledger, auto-save, submission and the
interrupt guard together. All recurring work (1 s timer tick, 30 s auto-save)
runs on the injected scheduler, so everything executes on one event loop and
never overlaps mid-operation.
"""
import logging
from typing import Any, Callable, Dict, Iterable, Optional

from .assembler import QuestionSet, QuestionSetAssembler
from .autosave import AutoSaveManager, PendingResume
from .config import ALL_PARTS, AUTO_SAVE_INTERVAL_SECONDS, TICK_SECONDS, part_minutes
from .errors import (
    AlreadySubmitted,
    AttemptPersistenceFailed,
    DuplicateActiveSession,
    InvalidAnswer,
    SessionNotActive,
    SubmissionInProgress,
)
from .guard import InterruptGuard
from .ledger import AnswerLedger
from .models import ExamSet, Question, SessionRecord, SessionStatus, Snapshot, TimeMode, parse_letter, utc_now_iso
from .scoring import ScoreResult, SubmissionEngine
from .store import RecordStore, SnapshotStore
from .timer import Scheduler, TimerController, TimerState, format_time

logger = logging.getLogger(__name__)


def allotted_seconds(exam_set: ExamSet, selected_parts: Optional[Iterable[int]], time_mode: TimeMode) -> Optional[int]:
    """
    Time bound for a session, None when unlimited.

    With a part filter: sum of the parts' allotted minutes.
    Without: the exam set's time limit, or the full seven-part allotment if it has none.
    """
    if time_mode is TimeMode.UNLIMITED:
        return None
    if selected_parts:
        return part_minutes(selected_parts) * 60
    minutes = exam_set.time_limit or part_minutes(ALL_PARTS)
    return int(minutes) * 60


class ExamSession:
    """
    Drives one exam attempt.

    Typical flow:
        pending = session.open(user_id, exam_set_id, parts=[3, 4])
        if pending:
            session.resume()            # or session.discard_and_start()
        session.answer("B")
        session.next()
        result = session.submit()
    """

    def __init__(
        self,
        store: RecordStore,
        snapshots: SnapshotStore,
        scheduler: Scheduler,
        autosave_interval: int = AUTO_SAVE_INTERVAL_SECONDS,
    ):
        self.store = store
        self.scheduler = scheduler
        self.assembler = QuestionSetAssembler(store)
        self.autosave = AutoSaveManager(store, snapshots, scheduler, interval=autosave_interval)
        self.submission = SubmissionEngine(store, self.autosave)
        self.guard = InterruptGuard(lambda: self.status, self._save_on_exit)

        self.record: Optional[SessionRecord] = None
        self.question_set: Optional[QuestionSet] = None
        self.ledger: Optional[AnswerLedger] = None
        self.timer: Optional[TimerController] = None
        self.current_index = 0
        self.result: Optional[ScoreResult] = None
        self.pending_resume: Optional[PendingResume] = None
        self.last_error: Optional[Exception] = None
        self._requested: Optional[tuple] = None

    # ============= Entry =============

    @property
    def status(self) -> SessionStatus:
        return self.record.status if self.record else SessionStatus.NOT_STARTED

    def open(
        self,
        user_id: str,
        exam_set_id: str,
        parts: Optional[Iterable[int]] = None,
        time_mode: TimeMode = TimeMode.STANDARD,
    ) -> Optional[PendingResume]:
        """
        Enter an exam set. Returns a PendingResume when an in-progress session
        already exists; the caller must then `resume()` or `discard_and_start()`.
        Otherwise a new session is started and None is returned.
        """
        if self.status is SessionStatus.IN_PROGRESS:
            raise DuplicateActiveSession(self.record.id, self.record.user_id, self.record.exam_set_id)
        self._requested = (user_id, exam_set_id, list(parts) if parts else None, TimeMode(time_mode))
        pending = self.autosave.reconcile(user_id, exam_set_id)
        if pending is not None:
            self.pending_resume = pending
            return pending
        self._start_new(*self._requested)
        return None

    def resume(self) -> None:
        """Continue the pending in-progress session from its saved progress."""
        pending = self.pending_resume
        if pending is None:
            raise SessionNotActive("No in-progress session to resume")
        session = pending.session
        question_set = self.assembler.replay(session.exam_set_id, session.served_question_ids, session.selected_parts)
        snapshot = pending.snapshot

        if snapshot is not None:
            ledger = AnswerLedger.restore(snapshot.answers, question_set.ids)
            remaining = snapshot.time_remaining
            index = min(max(snapshot.current_index, 0), len(question_set) - 1)
        else:
            ledger = AnswerLedger(question_set.ids)
            remaining = None
            index = 0

        allotted = None
        if session.time_mode is TimeMode.STANDARD:
            allotted = session.time_limit_seconds or allotted_seconds(
                question_set.exam_set, session.selected_parts, TimeMode.STANDARD
            )
        self.pending_resume = None
        logger.info(f"Resuming session {session.id} at question {index + 1}/{len(question_set)}")
        self._activate(session, question_set, ledger, allotted, remaining, index)

    def discard_and_start(self) -> None:
        """Cancel the pending in-progress session, then start a fresh one."""
        pending = self.pending_resume
        if pending is None or self._requested is None:
            raise SessionNotActive("No in-progress session to discard")
        self.autosave.cancel_session(pending.session)
        self.pending_resume = None
        self._start_new(*self._requested)

    def _start_new(self, user_id: str, exam_set_id: str, parts, time_mode: TimeMode) -> None:
        question_set = self.assembler.assemble(exam_set_id, parts)
        allotted = allotted_seconds(question_set.exam_set, question_set.selected_parts, time_mode)
        record = self.autosave.create_session(user_id, question_set, time_mode, allotted)
        self._activate(record, question_set, AnswerLedger(question_set.ids), allotted, None, 0)

    def _activate(self, record, question_set, ledger, allotted, remaining, index) -> None:
        self.record = record
        self.question_set = question_set
        self.ledger = ledger
        self.current_index = index
        self.result = None
        self.last_error = None
        self.timer = TimerController(
            self.scheduler,
            allotted,
            time_remaining=remaining,
            on_expire=self._auto_submit,
            on_tick=self._on_tick,
        )
        self.autosave.start(record, self._capture)
        # may expire at once when resumed with no time left
        self.timer.start()

    # ============= Recurring callbacks =============

    def _on_tick(self) -> None:
        if self.question_set and self.ledger is not None:
            self.ledger.add_time(self.question_set[self.current_index].id, TICK_SECONDS)

    def _capture(self) -> Optional[Snapshot]:
        # Any in-progress session is capturable, including one whose submit failed
        if self.status is not SessionStatus.IN_PROGRESS or self.timer is None:
            return None
        return Snapshot(
            session_id=self.record.id,
            exam_set_id=self.record.exam_set_id,
            current_index=self.current_index,
            answers=tuple(self.ledger.entries()),
            time_remaining=self.timer.time_remaining,
            served_question_ids=tuple(self.record.served_question_ids),
            timestamp=utc_now_iso(),
        )

    def _auto_submit(self) -> None:
        logger.info(f"Time is up for session {self.record.id}, submitting")
        try:
            self.submit()
        except (AlreadySubmitted, SubmissionInProgress) as e:
            logger.info(f"Auto-submit skipped: {e}")
        except AttemptPersistenceFailed as e:
            logger.error(f"Auto-submit saved the score but not the details: {e}")
        except Exception as e:
            self.last_error = e
            logger.error(f"Auto-submit failed for session {self.record.id}: {e}")

    def _save_on_exit(self) -> bool:
        return self.autosave.save(reason="exit")

    # ============= User actions =============

    def _require_active(self) -> None:
        if self.status is not SessionStatus.IN_PROGRESS:
            raise SessionNotActive(f"Session is {self.status.value}")
        if self.timer.state is not TimerState.RUNNING:
            raise SessionNotActive(f"Timer is {self.timer.state.value}")

    @property
    def current_question(self) -> Optional[Question]:
        if not self.question_set:
            return None
        return self.question_set[self.current_index]

    def answer(self, letter, question_id: Optional[str] = None) -> None:
        """Record a choice for `question_id` (default: the current question)."""
        self._require_active()
        question = self.question_set.by_id(question_id) if question_id else self.current_question
        if question is None:
            raise InvalidAnswer(f"Question {question_id} is not part of this session")
        try:
            chosen = parse_letter(letter)
        except ValueError:
            raise InvalidAnswer(f"{letter!r} is not an answer letter") from None
        if chosen not in question.letters:
            raise InvalidAnswer(f"Answer {chosen.value} is not offered in part {question.part}")
        self.ledger.set_answer(question.id, chosen)

    def go_to(self, index: int) -> None:
        if not self.question_set:
            raise SessionNotActive("No question set loaded")
        if index < 0 or index >= len(self.question_set):
            raise IndexError(f"Question index {index} out of range")
        self.current_index = index

    def next(self) -> bool:
        if self.question_set and self.current_index < len(self.question_set) - 1:
            self.current_index += 1
            return True
        return False

    def previous(self) -> bool:
        if self.current_index > 0:
            self.current_index -= 1
            return True
        return False

    def pause(self) -> bool:
        return bool(self.timer) and self.timer.pause()

    def resume_timer(self) -> bool:
        return bool(self.timer) and self.timer.resume()

    def submit(self) -> ScoreResult:
        if self.record is None:
            raise SessionNotActive("No session to submit")
        try:
            self.result = self.submission.submit(self.record, self.question_set.questions, self.ledger, self.timer)
        except AttemptPersistenceFailed as e:
            self.result = e.result
            self.last_error = e
            raise
        self.last_error = None
        return self.result

    def retry_attempts(self) -> int:
        """Write the attempts a previous submit could not, without re-scoring."""
        if self.status is not SessionStatus.COMPLETED or self.result is None:
            raise SessionNotActive("Only a completed session has attempts to retry")
        inserted = self.submission.persist_attempts(self.record, self.result)
        self.autosave.purge(self.record.id)
        self.last_error = None
        return inserted

    def request_exit(self, on_leave: Callable[[], Any], restore_state: Any = None) -> bool:
        """Leave through the interrupt guard. True if `on_leave` ran right away."""
        return self.guard.intercept(on_leave, restore_state, reason="exit")

    def suspend(self) -> None:
        """Stop local timers after the user left; the session stays in progress for a later resume."""
        if self.timer:
            self.timer.stop()
        self.autosave.stop()

    def progress(self) -> Dict[str, Any]:
        """Real-time summary for display."""
        total = len(self.question_set) if self.question_set else 0
        answered = self.ledger.answered_count() if self.ledger else 0
        remaining = self.timer.time_remaining if self.timer else None
        return {
            "session_id": self.record.id if self.record else None,
            "status": self.status.value,
            "current_question": self.current_index + 1,
            "display_number": self.question_set.display_number(self.current_index) if total else None,
            "total_questions": total,
            "answered": answered,
            "unanswered": total - answered,
            "time_remaining": remaining,
            "time_display": format_time(remaining),
            "timer_state": self.timer.state.value if self.timer else None,
        }
