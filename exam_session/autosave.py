"""
Auto-Save / Resume Manager.

Snapshots session progress every AUTO_SAVE_INTERVAL_SECONDS (and on exit)
into the snapshot store, mirrors the progress fields into the session record,
and reconciles an existing in-progress session before a new one is created.
Snapshot failures are logged and retried on the next tick; they never reach
the user.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .assembler import QuestionSet
from .config import AUTO_SAVE_INTERVAL_SECONDS, SNAPSHOT_KEY_PREFIX, TABLE_SESSIONS
from .errors import DuplicateActiveSession, MalformedRecord, RecordStoreError, SnapshotWriteFailed
from .models import Answer, SessionRecord, SessionStatus, Snapshot, TimeMode, utc_now_iso
from .store import RecordStore, SnapshotStore
from .timer import ScheduledHandle, Scheduler

logger = logging.getLogger(__name__)


def snapshot_key(session_id: str) -> str:
    return f"{SNAPSHOT_KEY_PREFIX}{session_id}"


@dataclass(frozen=True)
class PendingResume:
    """An in-progress session found on entry, with whatever progress was saved for it."""

    session: SessionRecord
    snapshot: Optional[Snapshot]

    @property
    def current_index(self) -> int:
        return self.snapshot.current_index if self.snapshot else 0

    @property
    def answered_count(self) -> int:
        if not self.snapshot:
            return 0
        return sum(1 for a in self.snapshot.answers if a.chosen is not None)

    @property
    def total_questions(self) -> int:
        return len(self.session.served_question_ids)


class AutoSaveManager:
    def __init__(
        self,
        store: RecordStore,
        snapshots: SnapshotStore,
        scheduler: Scheduler,
        interval: int = AUTO_SAVE_INTERVAL_SECONDS,
    ):
        self.store = store
        self.snapshots = snapshots
        self.scheduler = scheduler
        self.interval = interval
        self.session: Optional[SessionRecord] = None
        self.last_error: Optional[SnapshotWriteFailed] = None
        self.failed_writes = 0
        self.saves = 0
        self._capture: Optional[Callable[[], Optional[Snapshot]]] = None
        self._handle: Optional[ScheduledHandle] = None

    # ============= Session lifecycle =============

    def find_active(self, user_id: str, exam_set_id: str) -> Optional[SessionRecord]:
        """Most recent in-progress session for (user, exam set), if any."""
        rows = self.store.get(
            TABLE_SESSIONS,
            {"user_id": user_id, "exam_set_id": exam_set_id, "status": SessionStatus.IN_PROGRESS.value},
        )
        if not rows:
            return None
        if len(rows) > 1:
            logger.warning(f"{len(rows)} in-progress sessions for user {user_id} on exam set {exam_set_id}")
        rows.sort(key=lambda r: r.get("started_at") or "", reverse=True)
        return SessionRecord.from_row(rows[0])

    def create_session(
        self,
        user_id: str,
        question_set: QuestionSet,
        time_mode: TimeMode,
        allotted_seconds: Optional[int],
    ) -> SessionRecord:
        """
        Insert a new in-progress session with its served question list frozen.

        Raises:
            DuplicateActiveSession: one is already in progress; resume or cancel it first
        """
        exam_set_id = question_set.exam_set.id
        existing = self.find_active(user_id, exam_set_id)
        if existing:
            raise DuplicateActiveSession(existing.id, user_id, exam_set_id)

        record = SessionRecord(
            id="",
            user_id=user_id,
            exam_set_id=exam_set_id,
            status=SessionStatus.IN_PROGRESS,
            started_at=utc_now_iso(),
            total_questions=len(question_set),
            served_question_ids=question_set.ids,
            selected_parts=list(question_set.selected_parts) if question_set.selected_parts else None,
            time_mode=time_mode,
            time_limit_seconds=allotted_seconds,
        )
        try:
            row = self.store.insert(TABLE_SESSIONS, record.to_row())
        except RecordStoreError as e:
            # Another tab won the race past find_active; the partial unique index rejected this one
            if not e.is_unique_violation:
                raise
            winner = self.find_active(user_id, exam_set_id)
            raise DuplicateActiveSession(winner.id if winner else "", user_id, exam_set_id) from e
        record.id = str(row["id"])
        logger.info(f"Session {record.id} created: user={user_id}, exam_set={exam_set_id}, questions={len(question_set)}")
        return record

    def reconcile(self, user_id: str, exam_set_id: str) -> Optional[PendingResume]:
        session = self.find_active(user_id, exam_set_id)
        if session is None:
            return None
        logger.info(f"Found in-progress session {session.id} for user {user_id}")
        return PendingResume(session, self.load_snapshot(session))

    def load_snapshot(self, session: SessionRecord) -> Optional[Snapshot]:
        """Snapshot store first, then the progress mirrored into the session record."""
        try:
            payload = self.snapshots.get(snapshot_key(session.id))
        except Exception as e:
            logger.warning(f"Could not read snapshot for session {session.id}: {e}")
            payload = None
        if payload:
            try:
                return Snapshot.from_payload(payload)
            except MalformedRecord as e:
                logger.warning(f"Ignoring unreadable snapshot for session {session.id}: {e}")

        progress = session.progress
        if not progress:
            return None
        try:
            time_left = progress.get("time_left")
            return Snapshot(
                session_id=session.id,
                exam_set_id=session.exam_set_id,
                current_index=int(progress.get("current_index") or 0),
                answers=tuple(Answer.from_payload(str(qid), value) for qid, value in progress.get("answers") or []),
                time_remaining=None if time_left is None or int(time_left) < 0 else int(time_left),
                served_question_ids=tuple(session.served_question_ids),
                timestamp="",
            )
        except (TypeError, ValueError) as e:
            logger.error(f"Saved progress for session {session.id} cannot be read, resuming from the start: {e}")
            return None

    def cancel_session(self, session: SessionRecord) -> None:
        """Mark an abandoned session cancelled and drop its snapshot."""
        self.store.update(
            TABLE_SESSIONS,
            session.id,
            {"status": SessionStatus.CANCELLED.value, "completed_at": utc_now_iso()},
        )
        session.status = SessionStatus.CANCELLED
        self.purge(session.id)
        logger.info(f"Session {session.id} cancelled")

    # ============= Interval saving =============

    @property
    def running(self) -> bool:
        return self._handle is not None and not self._handle.cancelled

    def start(self, session: SessionRecord, capture: Callable[[], Optional[Snapshot]]) -> None:
        """Begin interval saving. `capture` returns None once the session is no longer in progress."""
        self.stop()
        self.session = session
        self._capture = capture
        self._handle = self.scheduler.call_every(self.interval, self._on_interval)

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _on_interval(self) -> None:
        self.save(reason="interval")

    def save(self, reason: str = "manual") -> bool:
        """Write one snapshot. Returns False when skipped or failed; never raises."""
        if self._capture is None or self.session is None:
            return False
        snapshot = self._capture()
        if snapshot is None:
            return False

        session = self.session
        payload = snapshot.to_payload()
        if session.time_limit_seconds is not None and snapshot.time_remaining is not None:
            time_spent = max(0, session.time_limit_seconds - snapshot.time_remaining)
        else:
            time_spent = 0
        session.progress = {
            "current_index": snapshot.current_index,
            "time_left": payload["timeRemaining"],
            "answers": payload["answers"],
        }
        try:
            self.snapshots.put(snapshot_key(session.id), payload)
            self.store.update(
                TABLE_SESSIONS,
                session.id,
                {"time_spent": time_spent, "updated_at": utc_now_iso(), "results": session.results()},
            )
        except Exception as e:
            self.failed_writes += 1
            self.last_error = SnapshotWriteFailed(session.id, e)
            logger.warning(f"Auto-save ({reason}) failed for session {session.id}, retrying next interval: {e}")
            return False

        self.saves += 1
        self.last_error = None
        logger.debug(f"Auto-save ({reason}) completed for session {session.id}")
        return True

    def purge(self, session_id: str) -> None:
        try:
            self.snapshots.delete(snapshot_key(session_id))
        except Exception as e:
            logger.warning(f"Could not delete snapshot for session {session_id}: {e}")
