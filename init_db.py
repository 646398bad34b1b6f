"""Initialize Supabase database schema for ExamGuard."""
import os
from dotenv import load_dotenv

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")

# SQL schema
SCHEMA_SQL = """
-- Students (login is full name + class; one attempt each)
CREATE TABLE IF NOT EXISTS students (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    full_name TEXT NOT NULL,
    class VARCHAR(10) NOT NULL,
    has_submitted BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    UNIQUE(full_name, class)
);

-- Question Bank
CREATE TABLE IF NOT EXISTS questions (
    id UUID PRIMARY KEY,
    class VARCHAR(10) NOT NULL,
    subject VARCHAR(50) NOT NULL,
    question_text TEXT NOT NULL,
    options JSONB NOT NULL,
    correct_answer INT NOT NULL CHECK (correct_answer >= 0),
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- Session snapshots (reload recovery, results awaiting storage), one per student
CREATE TABLE IF NOT EXISTS exam_sessions (
    id UUID PRIMARY KEY,
    student_id UUID NOT NULL UNIQUE REFERENCES students(id) ON DELETE CASCADE,
    class VARCHAR(10) NOT NULL,
    subject VARCHAR(50),
    questions_order JSONB NOT NULL,
    started_at TIMESTAMPTZ,
    time_limit INT NOT NULL,
    current_question_index INT DEFAULT 0,
    is_active BOOLEAN DEFAULT FALSE,
    state VARCHAR(20) NOT NULL,
    answers JSONB DEFAULT '{}'::jsonb,
    violations JSONB DEFAULT '[]'::jsonb,
    result JSONB,
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

-- Results (id is derived from the session id, so a retried insert is a no-op)
CREATE TABLE IF NOT EXISTS exam_results (
    id UUID PRIMARY KEY,
    session_id UUID NOT NULL UNIQUE,
    student_id UUID NOT NULL REFERENCES students(id),
    class VARCHAR(10) NOT NULL,
    subject VARCHAR(50),
    answers JSONB NOT NULL,
    score INT NOT NULL,
    total_questions INT NOT NULL,
    percentage INT NOT NULL,
    grade VARCHAR(2) NOT NULL,
    time_taken INT NOT NULL,
    cheating_flags JSONB DEFAULT '[]'::jsonb,
    submission_cause VARCHAR(20) NOT NULL,
    timestamp TIMESTAMPTZ NOT NULL
);

-- Create indexes for performance
CREATE INDEX IF NOT EXISTS idx_students_class ON students(class);
CREATE INDEX IF NOT EXISTS idx_questions_class_subject ON questions(class, subject);
CREATE INDEX IF NOT EXISTS idx_exam_results_class ON exam_results(class);
CREATE INDEX IF NOT EXISTS idx_exam_results_student_id ON exam_results(student_id);
"""


def main():
    print("Initializing Supabase schema...")
    print(f"URL: {SUPABASE_URL}")
    statements = [s.strip() for s in SCHEMA_SQL.split(";") if s.strip()]
    for i, stmt in enumerate(statements, 1):
        first = next(line for line in stmt.splitlines() if not line.startswith("--"))
        print(f"  {i}/{len(statements)} {first[:60]}...")
    print("\nNote: Due to Supabase client limitations, run this SQL in Supabase SQL Editor:")
    print(SCHEMA_SQL)


if __name__ == "__main__":
    main()
