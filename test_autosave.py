"""Auto-save snapshots, reconcile and session lifecycle."""
import pytest

from exam_session.assembler import QuestionSetAssembler
from exam_session.autosave import AutoSaveManager, snapshot_key
from exam_session.config import TABLE_SESSIONS
from exam_session.errors import UNIQUE_VIOLATION, DuplicateActiveSession, RecordStoreError, SnapshotWriteFailed
from exam_session.models import Answer, Letter, SessionStatus, Snapshot, TimeMode


def make_manager(store, snapshots, scheduler, exam_set_id, user_id="user-1", interval=30):
    manager = AutoSaveManager(store, snapshots, scheduler, interval=interval)
    question_set = QuestionSetAssembler(store).assemble(exam_set_id)
    record = manager.create_session(user_id, question_set, TimeMode.STANDARD, 600)
    return manager, question_set, record


def capture_for(record, question_set, state):
    def capture():
        if not state.get("active", True):
            return None
        return Snapshot(
            session_id=record.id,
            exam_set_id=record.exam_set_id,
            current_index=state.get("index", 0),
            answers=tuple(state.get("answers", ())),
            time_remaining=state.get("remaining", 600),
            served_question_ids=tuple(question_set.ids),
            timestamp="2026-01-01T00:00:00+00:00",
        )
    return capture


def test_create_session_freezes_served_questions(store, snapshots, scheduler, toeic_set):
    _, question_set, record = make_manager(store, snapshots, scheduler, toeic_set)
    row = store.rows(TABLE_SESSIONS)[0]
    assert row["status"] == "in_progress"
    assert row["results"]["served_question_ids"] == question_set.ids
    assert row["total_questions"] == len(question_set)
    assert record.id == row["id"]


def test_second_active_session_is_rejected(store, snapshots, scheduler, toeic_set):
    manager, question_set, record = make_manager(store, snapshots, scheduler, toeic_set)
    with pytest.raises(DuplicateActiveSession) as exc:
        manager.create_session("user-1", question_set, TimeMode.STANDARD, 600)
    assert exc.value.session_id == record.id
    # another user is unaffected
    manager.create_session("user-2", question_set, TimeMode.STANDARD, 600)


def test_concurrent_create_maps_unique_violation(store, snapshots, scheduler, toeic_set, monkeypatch):
    _, question_set, record = make_manager(store, snapshots, scheduler, toeic_set)
    other_tab = AutoSaveManager(store, snapshots, scheduler)
    lookups = []
    real_find_active = other_tab.find_active

    def stale_then_real(user_id, exam_set_id):
        # first lookup ran before the winning insert landed
        lookups.append(user_id)
        return None if len(lookups) == 1 else real_find_active(user_id, exam_set_id)

    monkeypatch.setattr(other_tab, "find_active", stale_then_real)
    store.fail("insert", TABLE_SESSIONS, error=RecordStoreError("duplicate key", code=UNIQUE_VIOLATION))
    with pytest.raises(DuplicateActiveSession) as exc:
        other_tab.create_session("user-1", question_set, TimeMode.STANDARD, 600)
    assert exc.value.session_id == record.id
    assert isinstance(exc.value.__cause__, RecordStoreError)
    assert len(store.rows(TABLE_SESSIONS)) == 1


def test_other_insert_failures_propagate(store, snapshots, scheduler, toeic_set):
    manager = AutoSaveManager(store, snapshots, scheduler)
    question_set = QuestionSetAssembler(store).assemble(toeic_set)
    store.fail("insert", TABLE_SESSIONS, error=RecordStoreError("insert exam_sessions failed: timeout"))
    with pytest.raises(RecordStoreError):
        manager.create_session("user-1", question_set, TimeMode.STANDARD, 600)


def test_saves_on_interval(store, snapshots, scheduler, toeic_set):
    manager, question_set, record = make_manager(store, snapshots, scheduler, toeic_set)
    state = {"index": 2, "answers": [Answer("q-1-1", Letter.A, 5)], "remaining": 540}
    manager.start(record, capture_for(record, question_set, state))

    scheduler.advance(29)
    assert snapshots.put_count == 0
    scheduler.advance(1)
    assert snapshots.put_count == 1
    scheduler.advance(60)
    assert snapshots.put_count == 3

    payload = snapshots.get(snapshot_key(record.id))
    assert payload["sessionId"] == record.id
    assert payload["currentIndex"] == 2
    assert payload["answers"] == [["q-1-1", {"questionId": "q-1-1", "answer": "A", "timeSpent": 5}]]
    assert payload["timeRemaining"] == 540
    assert payload["servedQuestionIds"] == question_set.ids

    row = store.rows(TABLE_SESSIONS)[0]
    assert row["time_spent"] == 60
    assert row["results"]["current_index"] == 2


def test_skips_while_not_running(store, snapshots, scheduler, toeic_set):
    manager, question_set, record = make_manager(store, snapshots, scheduler, toeic_set)
    state = {"active": False}
    manager.start(record, capture_for(record, question_set, state))
    scheduler.advance(90)
    assert snapshots.put_count == 0
    assert manager.save() is False


def test_failed_write_is_retried_next_interval(store, snapshots, scheduler, toeic_set):
    manager, question_set, record = make_manager(store, snapshots, scheduler, toeic_set)
    manager.start(record, capture_for(record, question_set, {}))
    snapshots.fail_puts = 1

    scheduler.advance(30)
    assert manager.failed_writes == 1
    assert isinstance(manager.last_error, SnapshotWriteFailed)
    assert snapshot_key(record.id) not in snapshots.data

    scheduler.advance(30)
    assert manager.last_error is None
    assert snapshot_key(record.id) in snapshots.data
    assert manager.saves == 1


def test_record_store_failure_does_not_raise(store, snapshots, scheduler, toeic_set):
    manager, question_set, record = make_manager(store, snapshots, scheduler, toeic_set)
    manager.start(record, capture_for(record, question_set, {}))
    store.fail("update", TABLE_SESSIONS)
    assert manager.save() is False
    assert manager.failed_writes == 1
    assert manager.save() is True


def test_stop_cancels_interval(store, snapshots, scheduler, toeic_set):
    manager, question_set, record = make_manager(store, snapshots, scheduler, toeic_set)
    manager.start(record, capture_for(record, question_set, {}))
    assert manager.running
    manager.stop()
    scheduler.advance(120)
    assert snapshots.put_count == 0
    assert not manager.running


def test_reconcile_returns_snapshot(store, snapshots, scheduler, toeic_set):
    manager, question_set, record = make_manager(store, snapshots, scheduler, toeic_set)
    state = {"index": 4, "answers": [Answer("q-2-1", Letter.C, 12)], "remaining": 321}
    manager.start(record, capture_for(record, question_set, state))
    manager.save()

    pending = AutoSaveManager(store, snapshots, scheduler).reconcile("user-1", toeic_set)
    assert pending.session.id == record.id
    assert pending.snapshot.current_index == 4
    assert pending.snapshot.time_remaining == 321
    assert pending.snapshot.answers == (Answer("q-2-1", Letter.C, 12),)
    assert pending.answered_count == 1
    assert pending.total_questions == len(question_set)


def test_reconcile_falls_back_to_session_record(store, snapshots, scheduler, toeic_set):
    manager, question_set, record = make_manager(store, snapshots, scheduler, toeic_set)
    state = {"index": 1, "answers": [Answer("q-1-2", Letter.B, 3)], "remaining": 500}
    manager.start(record, capture_for(record, question_set, state))
    manager.save()
    snapshots.data.clear()

    pending = manager.reconcile("user-1", toeic_set)
    assert pending.snapshot.current_index == 1
    assert pending.snapshot.time_remaining == 500
    assert pending.snapshot.answers[0].chosen is Letter.B


def test_reconcile_survives_unreadable_snapshot_store(store, snapshots, scheduler, toeic_set):
    manager, _, record = make_manager(store, snapshots, scheduler, toeic_set)
    snapshots.fail_gets = True
    pending = manager.reconcile("user-1", toeic_set)
    assert pending.session.id == record.id
    assert pending.snapshot is None
    assert pending.current_index == 0


def test_reconcile_without_active_session(store, snapshots, scheduler, toeic_set):
    assert AutoSaveManager(store, snapshots, scheduler).reconcile("nobody", toeic_set) is None


def test_cancel_session_purges_snapshot(store, snapshots, scheduler, toeic_set):
    manager, question_set, record = make_manager(store, snapshots, scheduler, toeic_set)
    manager.start(record, capture_for(record, question_set, {}))
    manager.save()
    manager.stop()

    manager.cancel_session(record)
    assert record.status is SessionStatus.CANCELLED
    assert store.rows(TABLE_SESSIONS)[0]["status"] == "cancelled"
    assert snapshot_key(record.id) not in snapshots.data
    assert manager.reconcile("user-1", toeic_set) is None


def test_unlimited_snapshot_uses_sentinel():
    snapshot = Snapshot("s", "e", 0, (), None, ("q",), "t")
    payload = snapshot.to_payload()
    assert payload["timeRemaining"] == -1
    assert Snapshot.from_payload(payload).time_remaining is None


def test_reconcile_skips_corrupt_snapshot(store, snapshots, scheduler, toeic_set):
    manager, question_set, record = make_manager(store, snapshots, scheduler, toeic_set)
    state = {"index": 3, "answers": [Answer("q-1-2", Letter.B, 3)], "remaining": 400}
    manager.start(record, capture_for(record, question_set, state))
    manager.save()
    snapshots.data[snapshot_key(record.id)]["answers"] = [["q-1-2", {"answer": "Z"}]]

    pending = manager.reconcile("user-1", toeic_set)
    # the progress mirrored into the session record is used instead
    assert pending.snapshot.current_index == 3
    assert pending.snapshot.answers[0].chosen is Letter.B


def test_reconcile_with_unreadable_progress_starts_over(store, snapshots, scheduler, toeic_set):
    _, _, record = make_manager(store, snapshots, scheduler, toeic_set)
    row = store.tables[TABLE_SESSIONS][record.id]
    row["results"].update({"current_index": 2, "time_left": 300, "answers": [["q-1-1", "nope"]]})

    pending = AutoSaveManager(store, snapshots, scheduler).reconcile("user-1", toeic_set)
    assert pending.session.id == record.id
    assert pending.snapshot is None
