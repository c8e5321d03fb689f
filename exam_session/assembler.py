"""
Question Set Assembler: loads the ordered question list for a session.

Ordering is part ascending, then authored order within the part. Questions
that share a passage are always served together and contiguously; a part
filter that would split a passage is widened to the whole passage.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .config import (
    ALL_PARTS,
    BLANK_INDEX_PARTS,
    PART_START_NUMBERS,
    TABLE_EXAM_QUESTIONS,
    TABLE_EXAM_SETS,
    TABLE_PASSAGES,
    TABLE_QUESTIONS,
)
from .errors import EmptyQuestionSet, ExamSetNotFound
from .models import ExamSet, Passage, Question
from .store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuestionSet:
    """Ordered, immutable question list served to one session, with its passages indexed by id."""

    exam_set: ExamSet
    questions: Tuple[Question, ...]
    passages: Mapping[str, Passage] = field(default_factory=dict)
    selected_parts: Optional[Tuple[int, ...]] = None

    def __len__(self) -> int:
        return len(self.questions)

    def __iter__(self) -> Iterator[Question]:
        return iter(self.questions)

    def __getitem__(self, index: int) -> Question:
        return self.questions[index]

    @property
    def ids(self) -> List[str]:
        return [q.id for q in self.questions]

    def by_id(self, question_id: str) -> Optional[Question]:
        return next((q for q in self.questions if q.id == question_id), None)

    def passage_for(self, question: Question) -> Optional[Passage]:
        if not question.passage_id:
            return None
        return self.passages.get(question.passage_id)

    def parts(self) -> List[int]:
        return sorted({q.part for q in self.questions})

    def display_number(self, index: int) -> int:
        """Official 1-200 question number of the question served at `index`."""
        question = self.questions[index]
        passage = self.passage_for(question)
        if question.part in BLANK_INDEX_PARTS and passage and question.blank_index:
            start = passage.start_question_number
            if start is not None:
                return start + question.blank_index - 1
        same_part_before = sum(1 for q in self.questions[:index] if q.part == question.part)
        return PART_START_NUMBERS[question.part] + same_part_before


def _member_key(question: Question):
    if question.part in BLANK_INDEX_PARTS and question.blank_index is not None:
        return (question.part, question.blank_index, question.order_index)
    return (question.part, question.order_index)


def order_questions(questions: Iterable[Question], passages: Mapping[str, Passage]) -> List[Question]:
    """
    Order questions for serving.

    Passage groups are placed with the lowest part among their members. Within
    a part, groups whose passage declares a start number come first, by that
    number; everything else follows by first authored index. Questions
    without a passage are their own unit.
    """
    groups: Dict[str, List[Question]] = {}
    units: List[Tuple[Tuple[int, int, int, int], List[Question]]] = []
    for q in questions:
        if q.passage_id:
            groups.setdefault(q.passage_id, []).append(q)
        else:
            units.append(((q.part, 1, q.order_index, q.order_index), [q]))

    for passage_id, members in groups.items():
        members.sort(key=_member_key)
        first_index = min(m.order_index for m in members)
        part = min(m.part for m in members)
        passage = passages.get(passage_id)
        start = passage.start_question_number if passage else None
        if start is not None:
            units.append(((part, 0, start, first_index), members))
        else:
            units.append(((part, 1, first_index, first_index), members))

    units.sort(key=lambda u: u[0])
    ordered: List[Question] = []
    for _, members in units:
        ordered.extend(members)
    return ordered


def filter_parts(questions: Sequence[Question], parts: Optional[Iterable[int]]) -> List[Question]:
    """
    Keep questions in `parts`, widened so every touched passage is served whole.
    """
    if not parts:
        return list(questions)
    wanted = set(parts)
    touched = {q.passage_id for q in questions if q.part in wanted and q.passage_id}
    kept = [q for q in questions if q.part in wanted or (q.passage_id and q.passage_id in touched)]
    widened = sum(1 for q in kept if q.part not in wanted)
    if widened:
        logger.info(f"Part filter {sorted(wanted)} widened by {widened} questions to keep passages whole")
    return kept


def _validate_parts(parts: Optional[Iterable[int]]) -> Optional[Tuple[int, ...]]:
    if not parts:
        return None
    normalized = tuple(sorted({int(p) for p in parts}))
    invalid = [p for p in normalized if p not in ALL_PARTS]
    if invalid:
        raise ValueError(f"Invalid part numbers: {invalid}")
    return normalized


class QuestionSetAssembler:
    """Reads exam sets, their questions and passages from the record store. Never writes."""

    def __init__(self, store: RecordStore):
        self.store = store

    def load_exam_set(self, exam_set_id: str) -> ExamSet:
        rows = self.store.get(TABLE_EXAM_SETS, {"id": exam_set_id})
        if not rows:
            raise ExamSetNotFound(exam_set_id)
        return ExamSet.from_row(rows[0])

    def _load_questions(self, exam_set_id: str) -> List[Question]:
        links = self.store.get(TABLE_EXAM_QUESTIONS, {"exam_set_id": exam_set_id})
        order = {}
        for position, link in enumerate(sorted(links, key=lambda r: (r.get("order_index") or 0))):
            order.setdefault(str(link["question_id"]), position)
        if not order:
            return []
        rows = self.store.get(TABLE_QUESTIONS, {"id": list(order)})
        return [Question.from_row(row, order_index=order[str(row["id"])]) for row in rows]

    def _load_passages(self, questions: Iterable[Question]) -> Dict[str, Passage]:
        passage_ids = sorted({q.passage_id for q in questions if q.passage_id})
        if not passage_ids:
            return {}
        rows = self.store.get(TABLE_PASSAGES, {"id": passage_ids})
        return {str(row["id"]): Passage.from_row(row) for row in rows}

    def assemble(self, exam_set_id: str, parts: Optional[Iterable[int]] = None) -> QuestionSet:
        """
        Build the ordered question set for a new session.

        Args:
            exam_set_id: exam set to serve
            parts: optional subset of parts (1-7); widened to keep passages whole

        Raises:
            ExamSetNotFound: no such exam set
            EmptyQuestionSet: nothing left to serve after filtering
        """
        selected = _validate_parts(parts)
        exam_set = self.load_exam_set(exam_set_id)
        all_questions = self._load_questions(exam_set_id)
        kept = filter_parts(all_questions, selected)
        if not kept:
            raise EmptyQuestionSet(f"Exam set {exam_set_id} has no questions for parts {selected or 'all'}")

        passages = self._load_passages(kept)
        ordered = order_questions(kept, passages)
        logger.info(f"Assembled {len(ordered)} questions ({len(passages)} passages) for exam set {exam_set_id}")
        return QuestionSet(exam_set, tuple(ordered), passages, selected)

    def replay(
        self,
        exam_set_id: str,
        served_question_ids: Sequence[str],
        parts: Optional[Iterable[int]] = None,
    ) -> QuestionSet:
        """
        Rebuild the exact list served earlier, in served order, for resume and review.
        Questions deleted since then are skipped.
        """
        exam_set = self.load_exam_set(exam_set_id)
        if not served_question_ids:
            raise EmptyQuestionSet(f"No served questions recorded for exam set {exam_set_id}")
        rows = self.store.get(TABLE_QUESTIONS, {"id": list(served_question_ids)})
        by_id = {str(row["id"]): row for row in rows}
        questions = [
            Question.from_row(by_id[qid], order_index=position)
            for position, qid in enumerate(served_question_ids)
            if qid in by_id
        ]
        missing = len(served_question_ids) - len(questions)
        if missing:
            logger.warning(f"{missing} served questions no longer exist for exam set {exam_set_id}")
        if not questions:
            raise EmptyQuestionSet(f"Served questions for exam set {exam_set_id} no longer exist")
        passages = self._load_passages(questions)
        return QuestionSet(exam_set, tuple(questions), passages, _validate_parts(parts))
