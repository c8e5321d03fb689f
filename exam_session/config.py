"""
Exam constants and environment settings.
Part layout follows the TOEIC format: parts 1-4 listening, 5-7 reading.
"""
import os
from dataclasses import dataclass
from typing import Dict, NamedTuple, Optional

from dotenv import load_dotenv

load_dotenv()


class PartConfig(NamedTuple):
    part: int
    question_count: int
    time_limit_minutes: int
    description: str


PART_CONFIGS: Dict[int, PartConfig] = {
    1: PartConfig(1, 6, 5, "Photographs"),
    2: PartConfig(2, 25, 20, "Question-Response"),
    3: PartConfig(3, 39, 30, "Conversations"),
    4: PartConfig(4, 30, 25, "Talks"),
    5: PartConfig(5, 30, 15, "Incomplete Sentences"),
    6: PartConfig(6, 16, 10, "Text Completion"),
    7: PartConfig(7, 54, 45, "Reading Comprehension"),
}

ALL_PARTS = tuple(sorted(PART_CONFIGS))

# Parts whose questions hang off a shared passage (conversation, talk, text)
PASSAGE_PARTS = frozenset({3, 4, 6, 7})

# Part 6 orders questions inside a passage by blank position
BLANK_INDEX_PARTS = frozenset({6})

# First official question number of each part (1-200 numbering)
PART_START_NUMBERS: Dict[int, int] = {1: 1, 2: 7, 3: 32, 4: 71, 5: 101, 6: 131, 7: 147}

# Timing
TICK_SECONDS = 1
AUTO_SAVE_INTERVAL_SECONDS = 30
UNLIMITED_SENTINEL = -1  # time_left value stored for unlimited sessions

# Tables
TABLE_EXAM_SETS = "exam_sets"
TABLE_EXAM_QUESTIONS = "exam_questions"
TABLE_QUESTIONS = "questions"
TABLE_PASSAGES = "passages"
TABLE_SESSIONS = "exam_sessions"
TABLE_ATTEMPTS = "exam_attempts"
TABLE_SNAPSHOTS = "exam_snapshots"

SNAPSHOT_KEY_PREFIX = "exam_progress_"


def part_minutes(parts) -> int:
    """Sum of allotted minutes over the given parts."""
    return sum(PART_CONFIGS[p].time_limit_minutes for p in parts)


@dataclass(frozen=True)
class Settings:
    supabase_url: Optional[str]
    supabase_key: Optional[str]
    autosave_interval: int = AUTO_SAVE_INTERVAL_SECONDS
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_key=os.getenv("SUPABASE_KEY"),
            autosave_interval=int(os.getenv("EXAM_AUTOSAVE_INTERVAL") or AUTO_SAVE_INTERVAL_SECONDS),
            log_level=(os.getenv("EXAM_LOG_LEVEL") or "INFO").upper(),
        )

    def require_supabase(self):
        if not self.supabase_url or not self.supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
        return self.supabase_url, self.supabase_key
