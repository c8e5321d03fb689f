"""Exam session engine: question assembly, timer, answer ledger, auto-save, scoring, interrupt guard."""
from .assembler import QuestionSet, QuestionSetAssembler
from .autosave import AutoSaveManager, PendingResume
from .errors import (
    AlreadySubmitted,
    AttemptPersistenceFailed,
    DuplicateActiveSession,
    EmptyQuestionSet,
    ExamSessionError,
    ExamSetNotFound,
    InvalidAnswer,
    MalformedRecord,
    NoQuestionsToScore,
    RecordStoreError,
    SessionNotActive,
    SnapshotWriteFailed,
    SubmissionInProgress,
)
from .guard import InterruptGuard
from .ledger import AnswerLedger
from .models import Letter, SessionStatus, TimeMode
from .scoring import ScoreResult, SubmissionEngine, score_answers
from .session import ExamSession
from .timer import AsyncioScheduler, ManualScheduler, TimerController, TimerState, format_time
