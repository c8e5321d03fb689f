"""Answer Ledger: in-memory question -> answer map for the active session."""
from typing import Dict, Iterable, List, Optional

from .errors import InvalidAnswer
from .models import Answer, Letter, parse_letter


class AnswerLedger:
    """
    Last-write-wins map of the user's choices.

    Correctness is not computed here; it is derived at submission so the
    correct choice never reaches client-visible state early. Entries are never
    removed, changing an answer overwrites the letter.
    """

    def __init__(self, question_ids: Optional[Iterable[str]] = None):
        self._allowed = set(question_ids) if question_ids is not None else None
        self._entries: Dict[str, Answer] = {}

    def _entry(self, question_id: str) -> Answer:
        if self._allowed is not None and question_id not in self._allowed:
            raise InvalidAnswer(f"Question {question_id} is not part of this session")
        entry = self._entries.get(question_id)
        if entry is None:
            entry = self._entries[question_id] = Answer(question_id=question_id)
        return entry

    def set_answer(self, question_id: str, letter) -> None:
        try:
            chosen = parse_letter(letter)
        except ValueError:
            raise InvalidAnswer(f"{letter!r} is not an answer letter") from None
        self._entry(question_id).chosen = chosen

    def get_answer(self, question_id: str) -> Optional[Letter]:
        """Chosen letter, or None when unanswered."""
        entry = self._entries.get(question_id)
        return entry.chosen if entry else None

    def add_time(self, question_id: str, seconds: int) -> None:
        self._entry(question_id).time_spent_seconds += int(seconds)

    def time_spent(self, question_id: str) -> int:
        entry = self._entries.get(question_id)
        return entry.time_spent_seconds if entry else 0

    def answered_count(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.chosen is not None)

    def entries(self) -> List[Answer]:
        """Copies of every entry, in insertion order."""
        return [Answer(e.question_id, e.chosen, e.time_spent_seconds) for e in self._entries.values()]

    def __contains__(self, question_id: str) -> bool:
        return question_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @classmethod
    def restore(cls, answers: Iterable[Answer], question_ids: Optional[Iterable[str]] = None) -> "AnswerLedger":
        """Rebuild a ledger from snapshot answers; entries for questions no longer served are dropped."""
        ledger = cls(question_ids)
        for answer in answers:
            if ledger._allowed is not None and answer.question_id not in ledger._allowed:
                continue
            ledger._entries[answer.question_id] = Answer(
                answer.question_id, answer.chosen, answer.time_spent_seconds
            )
        return ledger
