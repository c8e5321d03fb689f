"""Exception types raised by the exam session engine."""


class ExamSessionError(Exception):
    """Base class for every engine error."""


class ExamSetNotFound(ExamSessionError):
    def __init__(self, exam_set_id: str):
        super().__init__(f"Exam set {exam_set_id} not found")
        self.exam_set_id = exam_set_id


class EmptyQuestionSet(ExamSessionError):
    """Assembly produced no questions; a session must not be started."""


class InvalidAnswer(ExamSessionError):
    """Letter not offered by the question, or question not served in this session."""


class SessionNotActive(ExamSessionError):
    """Operation needs an in-progress session."""


class DuplicateActiveSession(ExamSessionError):
    def __init__(self, session_id: str, user_id: str, exam_set_id: str):
        super().__init__(
            f"Session {session_id} is already in progress for user {user_id} on exam set {exam_set_id}"
        )
        self.session_id = session_id
        self.user_id = user_id
        self.exam_set_id = exam_set_id


class AlreadySubmitted(ExamSessionError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} has already been submitted")
        self.session_id = session_id


class SubmissionInProgress(ExamSessionError):
    def __init__(self, session_id: str):
        super().__init__(f"Submission for session {session_id} is still in flight")
        self.session_id = session_id


class NoQuestionsToScore(ExamSessionError):
    """Scoring was asked for a session with zero questions."""


class SnapshotWriteFailed(ExamSessionError):
    """Auto-save write failed. Logged and retried on the next interval, never raised to the user."""

    def __init__(self, session_id: str, cause: Exception):
        super().__init__(f"Snapshot write for session {session_id} failed: {cause}")
        self.session_id = session_id
        self.cause = cause


class AttemptPersistenceFailed(ExamSessionError):
    """
    Session was recorded as completed but its attempts were not all written.
    Carries the computed result so the caller can retry attempt writing without re-scoring.
    """

    def __init__(self, session_id: str, result, cause: Exception):
        super().__init__(f"Results saved, details failed for session {session_id}: {cause}")
        self.session_id = session_id
        self.result = result
        self.cause = cause



class MalformedRecord(ExamSessionError, ValueError):
    """Stored question row or saved progress that cannot be read back."""


# Postgres SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"


class RecordStoreError(ExamSessionError):
    """Transport failure from the record store. The underlying exception is chained."""

    def __init__(self, message: str, code=None):
        super().__init__(message)
        self.code = code

    @property
    def is_unique_violation(self) -> bool:
        return self.code == UNIQUE_VIOLATION
