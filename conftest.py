"""Shared fixtures: in-memory record/snapshot stores and a small seeded TOEIC exam set."""
import copy
import sys
import uuid
from pathlib import Path

import pytest

project_root = Path(__file__).resolve().parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from exam_session.config import TABLE_EXAM_QUESTIONS, TABLE_EXAM_SETS, TABLE_PASSAGES, TABLE_QUESTIONS
from exam_session.store import RecordStore, SnapshotStore
from exam_session.timer import ManualScheduler


class StoreUnavailable(ConnectionError):
    pass


def _matches(row, filters):
    for column, value in (filters or {}).items():
        actual = row.get(column)
        if isinstance(value, (list, tuple, set, frozenset)):
            if str(actual) not in {str(v) for v in value}:
                return False
        elif actual != value and str(actual) != str(value):
            return False
    return True


class MemoryRecordStore(RecordStore):
    """Dict-backed RecordStore. `fail()` injects transport errors per (operation, table)."""

    def __init__(self):
        self.tables = {}
        self.calls = []
        self._faults = {}

    def fail(self, op, table, times=1, after=0, error=None):
        """Raise `error` (default StoreUnavailable) on the next `times` calls of `op` on `table`, after letting `after` calls through. times=-1: always."""
        self._faults[(op, table)] = {"after": after, "times": times, "error": error}

    def _check(self, op, table):
        fault = self._faults.get((op, table))
        if not fault:
            return
        if fault["after"] > 0:
            fault["after"] -= 1
            return
        if fault["times"] == 0:
            return
        if fault["times"] > 0:
            fault["times"] -= 1
        raise fault["error"] or StoreUnavailable(f"{op} {table} unavailable")

    def rows(self, table):
        return list(self.tables.get(table, {}).values())

    def get(self, table, filters=None):
        self.calls.append(("get", table, filters))
        self._check("get", table)
        return [copy.deepcopy(r) for r in self.rows(table) if _matches(r, filters)]

    def insert(self, table, record):
        self.calls.append(("insert", table, record))
        self._check("insert", table)
        row = copy.deepcopy(record)
        row.setdefault("id", str(uuid.uuid4()))
        self.tables.setdefault(table, {})[str(row["id"])] = row
        return copy.deepcopy(row)

    def update(self, table, record_id, patch):
        self.calls.append(("update", table, record_id))
        self._check("update", table)
        row = self.tables.get(table, {}).get(str(record_id))
        if row is None:
            raise KeyError(f"{table} {record_id} not found")
        row.update(copy.deepcopy(patch))
        return copy.deepcopy(row)


class MemorySnapshotStore(SnapshotStore):
    def __init__(self):
        self.data = {}
        self.fail_puts = 0
        self.fail_gets = False
        self.put_count = 0

    def put(self, key, value):
        if self.fail_puts:
            self.fail_puts -= 1
            raise StoreUnavailable("snapshot store unavailable")
        self.put_count += 1
        self.data[key] = copy.deepcopy(value)

    def get(self, key):
        if self.fail_gets:
            raise StoreUnavailable("snapshot store unavailable")
        value = self.data.get(key)
        return copy.deepcopy(value) if value is not None else None

    def delete(self, key):
        self.data.pop(key, None)


def question_row(qid, part, correct, passage_id=None, blank_index=None, choices=None):
    if choices is None:
        letters = "ABC" if part == 2 else "ABCD"
        choices = {letter: f"{qid} option {letter}" for letter in letters}
    return {
        "id": qid,
        "part": part,
        "passage_id": passage_id,
        "blank_index": blank_index,
        "prompt_text": f"Prompt {qid}",
        "choices": choices,
        "correct_choice": correct,
    }


def seed_exam(store, questions, passages=(), exam_set_id="set-1", time_limit=None, title="Practice Test 1"):
    """Insert an exam set whose authored order is the order of `questions`."""
    store.insert(TABLE_EXAM_SETS, {"id": exam_set_id, "title": title, "time_limit": time_limit, "is_active": True})
    for passage in passages:
        store.insert(TABLE_PASSAGES, passage)
    for position, row in enumerate(questions):
        store.insert(TABLE_QUESTIONS, row)
        store.insert(
            TABLE_EXAM_QUESTIONS,
            {"exam_set_id": exam_set_id, "question_id": row["id"], "order_index": position},
        )
    return exam_set_id


# Authored out of order on purpose: part 5 first, part 6 blanks reversed
TOEIC_PASSAGES = [
    {"id": "p-conv", "part": 3, "passage_type": "single", "texts": ["Conversation"], "meta": {"start_question_number": 32}},
    {"id": "p-mixed", "part": 3, "passage_type": "single", "texts": ["Shared"], "meta": {}},
    {"id": "p-text", "part": 6, "passage_type": "single", "texts": ["Memo"], "meta": {"start_question_number": 131}},
]

TOEIC_QUESTIONS = [
    question_row("q-5-1", 5, "D"),
    question_row("q-1-1", 1, "A"),
    question_row("q-1-2", 1, "B"),
    question_row("q-2-1", 2, "C"),
    question_row("q-3-1", 3, "A", passage_id="p-conv"),
    question_row("q-3-2", 3, "B", passage_id="p-conv"),
    question_row("q-3-3", 3, "C", passage_id="p-conv"),
    question_row("q-3-4", 3, "D", passage_id="p-mixed"),
    question_row("q-4-1", 4, "A", passage_id="p-mixed"),
    question_row("q-6-1", 6, "B", passage_id="p-text", blank_index=2),
    question_row("q-6-2", 6, "C", passage_id="p-text", blank_index=1),
]


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def snapshots():
    return MemorySnapshotStore()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def toeic_set(store):
    return seed_exam(store, TOEIC_QUESTIONS, TOEIC_PASSAGES, time_limit=120)


@pytest.fixture
def four_question_set(store):
    """Parts [1, 1, 2, 2]."""
    return seed_exam(
        store,
        [
            question_row("q1", 1, "A"),
            question_row("q2", 1, "B"),
            question_row("q3", 2, "C"),
            question_row("q4", 2, "A"),
        ],
        exam_set_id="set-4",
    )


@pytest.fixture
def one_minute_set(store):
    """Part 1 only, 1-minute time limit."""
    return seed_exam(
        store,
        [question_row("m1", 1, "A"), question_row("m2", 1, "C")],
        exam_set_id="set-60",
        time_limit=1,
    )
