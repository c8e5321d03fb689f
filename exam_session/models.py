"""
Domain records for exam sessions.

Rows coming from Supabase are plain dicts; every record here knows how to
build itself from a row (`from_row`) and how to render the columns it owns
(`to_row`). Snapshot payloads use the camelCase shape shared with the
browser client.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import UNLIMITED_SENTINEL
from .errors import MalformedRecord


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Letter(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"

    @property
    def index(self) -> int:
        return "ABCD".index(self.value)


def parse_letter(value: Any) -> Letter:
    """Letter from a member or a case-insensitive string. Raises ValueError otherwise."""
    if isinstance(value, Letter):
        return value
    return Letter(str(value).strip().upper())


def letters_for_part(part: int) -> Tuple[Letter, ...]:
    """Part 2 (question-response) offers three answers, every other part four."""
    if part == 2:
        return (Letter.A, Letter.B, Letter.C)
    return (Letter.A, Letter.B, Letter.C, Letter.D)


class TimeMode(str, Enum):
    STANDARD = "standard"
    UNLIMITED = "unlimited"


class SessionStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


NO_TEXT = ""


@dataclass(frozen=True)
class Choices:
    """Answer texts indexed by letter. Letters without a text hold NO_TEXT."""

    texts: Tuple[str, str, str, str] = (NO_TEXT, NO_TEXT, NO_TEXT, NO_TEXT)

    @classmethod
    def from_raw(cls, raw: Any) -> "Choices":
        # Stored either as {"A": "...", "B": "..."} or as an ordered list
        texts = [NO_TEXT] * 4
        if isinstance(raw, Mapping):
            for key, value in raw.items():
                letter = str(key).strip().upper()
                if letter in "ABCD" and len(letter) == 1:
                    texts[Letter(letter).index] = str(value) if value is not None else NO_TEXT
        elif isinstance(raw, (list, tuple)):
            for i, value in enumerate(raw[:4]):
                texts[i] = str(value) if value is not None else NO_TEXT
        return cls(tuple(texts))

    def text(self, letter: Letter) -> str:
        return self.texts[Letter(letter).index]

    def has_text(self, letter: Letter) -> bool:
        return self.text(letter) != NO_TEXT

    def as_dict(self) -> Dict[str, str]:
        return {letter.value: self.texts[letter.index] for letter in Letter}


@dataclass(frozen=True)
class Question:
    id: str
    part: int
    choices: Choices
    correct_choice: Letter
    order_index: int = 0
    passage_id: Optional[str] = None
    blank_index: Optional[int] = None
    prompt_text: str = ""
    audio_url: Optional[str] = None
    image_url: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict, order_index: Optional[int] = None) -> "Question":
        try:
            part = int(row["part"])
            correct = parse_letter(row["correct_choice"])
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedRecord(f"Question {row.get('id')} cannot be read: {e}") from e
        if part < 1 or part > 7:
            raise MalformedRecord(f"Question {row.get('id')} has invalid part {part}")
        if correct not in letters_for_part(part):
            raise MalformedRecord(f"Question {row.get('id')}: {correct.value} is not a valid answer for part {part}")
        blank_index = row.get("blank_index")
        return cls(
            id=str(row["id"]),
            part=part,
            choices=Choices.from_raw(row.get("choices")),
            correct_choice=correct,
            order_index=int(order_index if order_index is not None else row.get("order_index") or 0),
            passage_id=str(row["passage_id"]) if row.get("passage_id") else None,
            blank_index=int(blank_index) if blank_index is not None else None,
            prompt_text=row.get("prompt_text") or "",
            audio_url=row.get("audio_url"),
            image_url=row.get("image_url"),
        )

    @property
    def letters(self) -> Tuple[Letter, ...]:
        return letters_for_part(self.part)


@dataclass(frozen=True)
class Passage:
    id: str
    part: int
    passage_type: str = "single"
    texts: Any = None
    image_url: Optional[str] = None
    audio_url: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict) -> "Passage":
        return cls(
            id=str(row["id"]),
            part=int(row.get("part") or 0),
            passage_type=row.get("passage_type") or "single",
            texts=row.get("texts"),
            image_url=row.get("image_url"),
            audio_url=row.get("audio_url"),
            meta=dict(row.get("meta") or {}),
        )

    @property
    def start_question_number(self) -> Optional[int]:
        raw = self.meta.get("start_question_number")
        try:
            return int(raw) if raw is not None else None
        except (TypeError, ValueError):
            return None


@dataclass(frozen=True)
class ExamSet:
    id: str
    title: str = ""
    time_limit: Optional[int] = None  # minutes
    question_count: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict) -> "ExamSet":
        return cls(
            id=str(row["id"]),
            title=row.get("title") or "",
            time_limit=row.get("time_limit"),
            question_count=row.get("question_count"),
        )


@dataclass
class SessionRecord:
    """One exam attempt as stored in exam_sessions. Serving metadata lives in the `results` column."""

    id: str
    user_id: str
    exam_set_id: str
    status: SessionStatus = SessionStatus.NOT_STARTED
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    time_spent_seconds: int = 0
    score: int = 0
    total_questions: int = 0
    correct_answers: int = 0
    served_question_ids: List[str] = field(default_factory=list)
    selected_parts: Optional[List[int]] = None
    time_mode: TimeMode = TimeMode.STANDARD
    time_limit_seconds: Optional[int] = None
    progress: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict) -> "SessionRecord":
        results = dict(row.get("results") or {})
        progress = {k: results[k] for k in ("current_index", "time_left", "answers") if k in results}
        parts = results.get("selected_parts")
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            exam_set_id=str(row["exam_set_id"]),
            status=SessionStatus(row.get("status") or SessionStatus.NOT_STARTED.value),
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            time_spent_seconds=int(row.get("time_spent") or 0),
            score=int(row.get("score") or 0),
            total_questions=int(row.get("total_questions") or 0),
            correct_answers=int(row.get("correct_answers") or 0),
            served_question_ids=[str(q) for q in results.get("served_question_ids") or []],
            selected_parts=[int(p) for p in parts] if parts else None,
            time_mode=TimeMode(results.get("time_mode") or TimeMode.STANDARD.value),
            time_limit_seconds=results.get("time_limit_seconds"),
            progress=progress,
        )

    def results(self) -> Dict[str, Any]:
        out = {
            "served_question_ids": list(self.served_question_ids),
            "selected_parts": list(self.selected_parts) if self.selected_parts else None,
            "time_mode": self.time_mode.value,
            "time_limit_seconds": self.time_limit_seconds,
        }
        out.update(self.progress)
        return out

    def to_row(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "exam_set_id": self.exam_set_id,
            "status": self.status.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "time_spent": self.time_spent_seconds,
            "score": self.score,
            "total_questions": self.total_questions,
            "correct_answers": self.correct_answers,
            "results": self.results(),
        }


@dataclass
class Answer:
    """Ledger entry. `is_correct` stays None until submission scores it."""

    question_id: str
    chosen: Optional[Letter] = None
    time_spent_seconds: int = 0
    is_correct: Optional[bool] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "questionId": self.question_id,
            "answer": self.chosen.value if self.chosen else None,
            "timeSpent": self.time_spent_seconds,
        }

    @classmethod
    def from_payload(cls, question_id: str, payload: Any) -> "Answer":
        # Older snapshots stored the bare letter
        if isinstance(payload, Mapping):
            letter = payload.get("answer")
            spent = payload.get("timeSpent")
        else:
            letter, spent = payload, 0
        try:
            return cls(
                question_id=question_id,
                chosen=parse_letter(letter) if letter else None,
                time_spent_seconds=int(spent or 0),
            )
        except (TypeError, ValueError) as e:
            raise MalformedRecord(f"Saved answer for question {question_id} cannot be read: {e}") from e


@dataclass(frozen=True)
class Attempt:
    session_id: str
    question_id: str
    user_answer: Optional[str]
    is_correct: bool
    time_spent_seconds: int = 0
    id: Optional[str] = None
    answered_at: Optional[str] = None

    @classmethod
    def from_answer(cls, session_id: str, answer: Answer, answered_at: Optional[str] = None) -> "Attempt":
        return cls(
            session_id=session_id,
            question_id=answer.question_id,
            user_answer=answer.chosen.value if answer.chosen else None,
            is_correct=bool(answer.is_correct),
            time_spent_seconds=answer.time_spent_seconds,
            answered_at=answered_at,
        )

    @classmethod
    def from_row(cls, row: Dict) -> "Attempt":
        return cls(
            session_id=str(row["session_id"]),
            question_id=str(row["question_id"]),
            user_answer=row.get("user_answer"),
            is_correct=bool(row.get("is_correct")),
            time_spent_seconds=int(row.get("time_spent") or 0),
            id=str(row["id"]) if row.get("id") is not None else None,
            answered_at=row.get("answered_at"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "question_id": self.question_id,
            "user_answer": self.user_answer,
            "is_correct": self.is_correct,
            "time_spent": self.time_spent_seconds,
            "answered_at": self.answered_at,
        }


@dataclass(frozen=True)
class Snapshot:
    """Durable progress checkpoint written by auto-save."""

    session_id: str
    exam_set_id: str
    current_index: int
    answers: Tuple[Answer, ...]
    time_remaining: Optional[int]  # None = unlimited
    served_question_ids: Tuple[str, ...]
    timestamp: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "examSetId": self.exam_set_id,
            "currentIndex": self.current_index,
            "answers": [[a.question_id, a.to_payload()] for a in self.answers],
            "timeRemaining": UNLIMITED_SENTINEL if self.time_remaining is None else self.time_remaining,
            "servedQuestionIds": list(self.served_question_ids),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Snapshot":
        try:
            remaining = payload.get("timeRemaining")
            if remaining is None or int(remaining) < 0:
                remaining = None
            return cls(
                session_id=str(payload["sessionId"]),
                exam_set_id=str(payload.get("examSetId") or ""),
                current_index=int(payload.get("currentIndex") or 0),
                answers=tuple(Answer.from_payload(str(qid), value) for qid, value in payload.get("answers") or []),
                time_remaining=int(remaining) if remaining is not None else None,
                served_question_ids=tuple(str(q) for q in payload.get("servedQuestionIds") or []),
                timestamp=payload.get("timestamp") or "",
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise MalformedRecord(f"Snapshot cannot be read: {e}") from e
