"""TOEIC Exam Session: timed, resumable practice tests."""
import logging
import sys
import time
import uuid
from pathlib import Path

# Ensure project root is in path
project_root = Path(__file__).resolve().parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import streamlit as st

from db import get_exam_sets, get_record_store, get_session_history, get_snapshot_store
from exam_session import (
    AttemptPersistenceFailed,
    ExamSession,
    ExamSessionError,
    ManualScheduler,
    SessionStatus,
    TimeMode,
    TimerState,
)
from exam_session.config import PART_CONFIGS, Settings
from exam_session.retry import apply_corrections, load_review

settings = Settings.from_env()
logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("app")

PAGES = ["Exam", "History"]

st.set_page_config(page_title="TOEIC Exam Session", layout="wide")
st.sidebar.title("TOEIC Exam Session")

if "user_id" not in st.session_state:
    st.session_state["user_id"] = str(uuid.uuid4())
user_id = st.sidebar.text_input("User ID", key="user_id")

# A declined leave puts the sidebar back where it was before the widget is drawn
if "nav_restore" in st.session_state:
    st.session_state["nav"] = st.session_state.pop("nav_restore")
if "nav" not in st.session_state:
    st.session_state["nav"] = PAGES[0]
page = st.sidebar.radio("Navigate", PAGES, key="nav", label_visibility="collapsed")


def _new_exam() -> ExamSession:
    scheduler = ManualScheduler(start=time.monotonic())
    return ExamSession(get_record_store(), get_snapshot_store(), scheduler, autosave_interval=settings.autosave_interval)


def _exam() -> ExamSession:
    if "exam" not in st.session_state:
        st.session_state["exam"] = _new_exam()
    return st.session_state["exam"]


def _catch_up(exam: ExamSession) -> None:
    """Advance the exam clock by the wall-clock time since the last rerun."""
    scheduler = exam.scheduler
    scheduler.advance(time.monotonic() - scheduler.now())


def _leave_exam() -> None:
    exam = st.session_state.get("exam")
    if exam is not None:
        exam.suspend()
        logger.info(f"User left session {exam.record.id if exam.record else None}")
    st.session_state.pop("exam", None)
    st.session_state["left_exam"] = True
    st.session_state["nav_restore"] = "History"


exam = _exam()
_catch_up(exam)

# ----- Interrupt guard -----
if exam.status is SessionStatus.IN_PROGRESS and page != "Exam" and exam.guard.pending is None:
    exam.request_exit(_leave_exam, restore_state="Exam")

if exam.guard.pending is not None:
    st.warning("Your exam is in progress. Leave now? Progress will be saved and you can resume later.")
    col1, col2 = st.columns(2)
    with col1:
        if st.button("Leave exam", type="primary", use_container_width=True):
            exam.guard.confirm()
            st.rerun()
    with col2:
        if st.button("Stay", use_container_width=True):
            st.session_state["nav_restore"] = exam.guard.decline()
            st.rerun()
    st.stop()

# ----- History -----
if page == "History":
    st.header("History")
    if st.session_state.pop("left_exam", False):
        st.info("Exam progress saved. Open the exam set again to resume.")
    try:
        rows = get_session_history(user_id).data or []
    except Exception as e:
        st.error(f"Could not load history. Check DB and .env (SUPABASE_URL, SUPABASE_KEY). {e}")
        st.stop()
    if not rows:
        st.caption("No completed sessions yet.")
    for row in rows:
        with st.expander(f"{(row.get('completed_at') or '')[:16]} · score {row.get('score')}%"):
            st.write(f"Correct: {row.get('correct_answers')}/{row.get('total_questions')} · time {row.get('time_spent')} s")
            if st.button("Review", key=f"review_{row['id']}"):
                st.session_state["review_id"] = row["id"]
                st.session_state["nav_restore"] = "Exam"
                st.session_state.pop("exam", None)
                st.rerun()
    st.stop()

# ----- Exam -----
st.header("Exam")

# Review / retry mode for a completed session
review_id = st.session_state.get("review_id")
if review_id and exam.status is SessionStatus.NOT_STARTED:
    try:
        review = load_review(get_record_store(), review_id)
    except (LookupError, ExamSessionError) as e:
        st.error(f"Could not load review: {e}")
        st.session_state.pop("review_id", None)
        st.stop()
    st.subheader(f"Review · score {review.session.score}% ({review.session.correct_answers}/{review.session.total_questions})")
    corrections = {}
    for i, q in enumerate(review.question_set):
        attempt = review.attempt_for(q.id)
        given = attempt.user_answer if attempt else None
        mark = "✓" if attempt and attempt.is_correct else "✗"
        st.markdown(f"**{review.question_set.display_number(i)}.** {q.prompt_text or '(audio)'} {mark}")
        st.caption(f"Your answer: {given or '—'} · correct: {q.correct_choice.value}")
        if not (attempt and attempt.is_correct):
            letters = [letter.value for letter in q.letters]
            choice = st.radio("Retry", ["—"] + letters, key=f"retry_{q.id}", horizontal=True)
            if choice != "—":
                corrections[q.id] = choice
    col1, col2 = st.columns(2)
    with col1:
        if st.button("Apply retry answers", disabled=not corrections):
            try:
                session = apply_corrections(get_record_store(), review_id, corrections)
                st.success(f"Updated score: {session.score}%")
            except ExamSessionError as e:
                st.error(str(e))
    with col2:
        if st.button("Close review"):
            st.session_state.pop("review_id", None)
            st.rerun()
    st.stop()

# Entry: pick an exam set
if exam.status is SessionStatus.NOT_STARTED and exam.pending_resume is None:
    try:
        exam_sets = get_exam_sets().data or []
    except Exception as e:
        st.error(f"Could not load exam sets. Check DB and .env (SUPABASE_URL, SUPABASE_KEY). {e}")
        st.stop()
    if not exam_sets:
        st.info("No active exam sets.")
        st.stop()
    titles = {s["id"]: s.get("title") or s["id"] for s in exam_sets}
    exam_set_id = st.selectbox("Exam set", list(titles), format_func=lambda i: titles[i])
    parts = st.multiselect(
        "Parts (leave empty for the full test)",
        list(PART_CONFIGS),
        format_func=lambda p: f"Part {p}: {PART_CONFIGS[p].description}",
    )
    unlimited = st.toggle("Unlimited time (practice)")
    if st.button("Start exam", type="primary"):
        try:
            exam.open(user_id, exam_set_id, parts or None, TimeMode.UNLIMITED if unlimited else TimeMode.STANDARD)
        except ExamSessionError as e:
            st.error(str(e))
        else:
            st.rerun()
    st.stop()

# Resume prompt
if exam.pending_resume is not None:
    pending = exam.pending_resume
    st.info(
        f"You have an unfinished session: question {pending.current_index + 1} of {pending.total_questions}, "
        f"{pending.answered_count} answered."
    )
    col1, col2 = st.columns(2)
    with col1:
        if st.button("Resume", type="primary", use_container_width=True):
            try:
                exam.resume()
            except ExamSessionError as e:
                st.error(f"Could not resume: {e}")
            else:
                st.rerun()
    with col2:
        if st.button("Discard and start over", use_container_width=True):
            try:
                exam.discard_and_start()
            except ExamSessionError as e:
                st.error(f"Could not start over: {e}")
            else:
                st.rerun()
    st.stop()

# Result
if exam.status is SessionStatus.COMPLETED:
    result = exam.result
    st.success("Exam submitted.")
    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Score", f"{result.score}%")
    with col2:
        st.metric("Correct", f"{result.correct_answers}/{result.total_questions}")
    with col3:
        st.metric("Time spent", f"{result.time_spent_seconds} s")
    if isinstance(exam.last_error, AttemptPersistenceFailed):
        st.warning(str(exam.last_error))
        if st.button("Retry saving answers"):
            try:
                exam.retry_attempts()
            except AttemptPersistenceFailed as e:
                st.error(str(e))
            else:
                st.rerun()
    if st.button("Review answers"):
        st.session_state["review_id"] = exam.record.id
        st.session_state.pop("exam", None)
        st.rerun()
    if st.button("Start a new exam"):
        st.session_state.pop("exam", None)
        st.rerun()
    st.stop()

# In progress
progress = exam.progress()
st.sidebar.metric("Time left", progress["time_display"])
total = progress["total_questions"]
st.sidebar.progress(progress["answered"] / total if total else 0)
st.sidebar.caption(f"{progress['answered']}/{total} answered")
if exam.autosave.last_error is not None:
    st.sidebar.caption("Auto-save pending retry")


@st.fragment(run_every=1)
def _clock():
    _catch_up(exam)
    if exam.status is not SessionStatus.IN_PROGRESS:
        st.rerun()
    st.caption(f"Time left: {exam.progress()['time_display']}")


_clock()

q = exam.current_question
passage = exam.question_set.passage_for(q)
st.subheader(f"Question {progress['display_number']} · Part {q.part} ({progress['current_question']} of {total})")
if passage is not None and passage.texts:
    with st.expander("Passage", expanded=True):
        st.write(passage.texts)
if q.image_url:
    st.image(q.image_url)
if q.audio_url:
    st.audio(q.audio_url)
if q.prompt_text:
    st.write(q.prompt_text)

letters = [letter.value for letter in q.letters]
current = exam.ledger.get_answer(q.id)
labels = {letter: f"{letter}. {q.choices.text(letter)}" if q.choices.has_text(letter) else letter for letter in letters}
paused = exam.timer.state is TimerState.PAUSED
choice = st.radio(
    "Choose one:",
    letters,
    format_func=lambda letter: labels[letter],
    key=f"q_{q.id}",
    index=letters.index(current.value) if current else None,
    disabled=paused,
)
if choice is not None and (current is None or choice != current.value):
    try:
        exam.answer(choice)
    except ExamSessionError as e:
        st.error(str(e))

col1, col2, col3, col4 = st.columns([1, 1, 1, 2])
with col1:
    if st.button("Previous"):
        exam.previous()
        st.rerun()
with col2:
    if st.button("Next"):
        exam.next()
        st.rerun()
with col3:
    if exam.timer.mode is TimeMode.STANDARD:
        if paused:
            if st.button("Resume timer"):
                exam.resume_timer()
                st.rerun()
        elif st.button("Pause"):
            exam.pause()
            st.rerun()
with col4:
    confirm = st.checkbox(f"I want to submit ({progress['unanswered']} unanswered)")
    if st.button("Submit exam", type="primary", disabled=not confirm):
        try:
            exam.submit()
        except AttemptPersistenceFailed as e:
            # The result view shows last_error with a retry button
            logger.error(f"Session {e.session_id} scored but attempts not saved: {e.cause}")
        except ExamSessionError as e:
            st.error(str(e))
        if exam.status is SessionStatus.COMPLETED:
            st.rerun()

if st.sidebar.button("Exit exam"):
    exam.request_exit(_leave_exam, restore_state="Exam")
    st.rerun()
