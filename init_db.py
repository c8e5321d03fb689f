"""Initialize Supabase database schema for the exam session engine."""
from exam_session.config import Settings

# SQL schema
SCHEMA_SQL = """
-- Exam sets (one full or partial TOEIC test)
CREATE TABLE IF NOT EXISTS exam_sets (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    title TEXT NOT NULL,
    time_limit INT,
    question_count INT,
    is_active BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- Shared passages (conversations, talks, texts)
CREATE TABLE IF NOT EXISTS passages (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    part INT NOT NULL CHECK (part BETWEEN 1 AND 7),
    passage_type VARCHAR(20) DEFAULT 'single',
    texts JSONB,
    image_url TEXT,
    audio_url TEXT,
    meta JSONB DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- Question bank
CREATE TABLE IF NOT EXISTS questions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    part INT NOT NULL CHECK (part BETWEEN 1 AND 7),
    passage_id UUID REFERENCES passages(id) ON DELETE SET NULL,
    blank_index INT,
    prompt_text TEXT,
    choices JSONB NOT NULL,
    correct_choice CHAR(1) NOT NULL CHECK (correct_choice IN ('A', 'B', 'C', 'D')),
    audio_url TEXT,
    image_url TEXT,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- Exam set membership and authored order
CREATE TABLE IF NOT EXISTS exam_questions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    exam_set_id UUID NOT NULL REFERENCES exam_sets(id) ON DELETE CASCADE,
    question_id UUID NOT NULL REFERENCES questions(id) ON DELETE CASCADE,
    order_index INT NOT NULL,
    UNIQUE(exam_set_id, question_id)
);

-- Exam sessions
CREATE TABLE IF NOT EXISTS exam_sessions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID NOT NULL,
    exam_set_id UUID NOT NULL REFERENCES exam_sets(id),
    status VARCHAR(20) DEFAULT 'in_progress'
        CHECK (status IN ('not_started', 'in_progress', 'completed', 'cancelled')),
    started_at TIMESTAMPTZ DEFAULT NOW(),
    completed_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ,
    time_spent INT DEFAULT 0,
    score INT DEFAULT 0 CHECK (score BETWEEN 0 AND 100),
    total_questions INT DEFAULT 0,
    correct_answers INT DEFAULT 0,
    results JSONB DEFAULT '{}'::jsonb
);

-- Per-question answers of a completed session
CREATE TABLE IF NOT EXISTS exam_attempts (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    session_id UUID NOT NULL REFERENCES exam_sessions(id) ON DELETE CASCADE,
    question_id UUID NOT NULL REFERENCES questions(id),
    user_answer CHAR(1) CHECK (user_answer IS NULL OR user_answer IN ('A', 'B', 'C', 'D')),
    is_correct BOOLEAN NOT NULL DEFAULT FALSE,
    time_spent INT DEFAULT 0,
    answered_at TIMESTAMPTZ DEFAULT NOW(),
    UNIQUE(session_id, question_id)
);

-- Auto-save snapshots (key/value)
CREATE TABLE IF NOT EXISTS exam_snapshots (
    key TEXT PRIMARY KEY,
    value JSONB NOT NULL,
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

-- Create indexes for performance
CREATE INDEX IF NOT EXISTS idx_questions_part ON questions(part);
CREATE INDEX IF NOT EXISTS idx_questions_passage_id ON questions(passage_id);
CREATE INDEX IF NOT EXISTS idx_exam_questions_exam_set_id ON exam_questions(exam_set_id);
CREATE INDEX IF NOT EXISTS idx_exam_sessions_user_set_status ON exam_sessions(user_id, exam_set_id, status);
-- At most one in-progress session per user and exam set
CREATE UNIQUE INDEX IF NOT EXISTS uq_exam_sessions_one_active ON exam_sessions(user_id, exam_set_id) WHERE status = 'in_progress';
CREATE INDEX IF NOT EXISTS idx_exam_attempts_session_id ON exam_attempts(session_id);
"""


def schema_statements():
    return [s.strip() for s in SCHEMA_SQL.split(";") if s.strip()]


def main():
    settings = Settings.from_env()
    print("Initializing Supabase schema...")
    print(f"URL: {settings.supabase_url}")

    statements = schema_statements()
    for i, stmt in enumerate(statements, 1):
        print(f"Statement {i}/{len(statements)}: {stmt[:60]}...")

    print("\nNote: Due to Supabase client limitations, run this SQL in Supabase SQL Editor:")
    print(SCHEMA_SQL)
    print("Go to: https://app.supabase.com > SQL Editor > New Query")


if __name__ == "__main__":
    main()
