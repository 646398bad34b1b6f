"""Tests for the Supabase-backed collaborators and dashboard queries (fake client)."""
import pytest

from conftest import FakeClock, FakeSupabase
from db import (
    get_question_counts,
    get_results_by_class,
    get_students_by_class,
    reset_student_submission,
    upsert_questions_bulk,
)
from exam_engine.controller import SessionController
from exam_engine.database import DatabaseClient
from exam_engine.errors import PersistenceError, PreconditionError
from exam_engine.models import SessionState


def question_row(qid, class_tag="JSS1A", subject="Basic Science", correct=1, options=("a", "b", "c", "d")):
    return {
        "id": qid,
        "class": class_tag,
        "subject": subject,
        "question_text": f"Question {qid}?",
        "options": list(options),
        "correct_answer": correct,
    }


@pytest.fixture
def supabase():
    return FakeSupabase({
        "students": [
            {"id": "stu-1", "full_name": "Ada Obi", "class": "JSS1A", "has_submitted": False},
            {"id": "stu-2", "full_name": "Bola Ade", "class": "JSS1A", "has_submitted": True},
        ],
        "questions": [
            question_row("q1", correct=0),
            question_row("q2", correct=1),
            question_row("q3", correct=2),
            question_row("q4", subject="Mathematics"),
            question_row("broken", options=("only",)),
        ],
    })


@pytest.fixture
def database(supabase):
    return DatabaseClient(supabase)


class TestDatabaseClient:
    def test_fetch_questions_when_class_and_subject_then_filtered_and_valid_only(self, database):
        questions = database.fetch_questions("JSS1A", "Basic Science")
        assert sorted(q.id for q in questions) == ["q1", "q2", "q3"]

    def test_fetch_questions_when_query_fails_then_empty(self, database, supabase):
        supabase.failing.add("questions")
        assert database.fetch_questions("JSS1A", "Basic Science") == []

    def test_get_student_when_name_and_class_match_then_row(self, database):
        assert database.get_student("Ada Obi", "JSS1A")["id"] == "stu-1"
        assert database.get_student("Ada Obi", "SS1A") is None

    def test_is_submitted_when_known_then_flag(self, database):
        assert database.is_submitted("stu-1") is False
        assert database.is_submitted("stu-2") is True

    def test_is_submitted_when_unknown_student_then_precondition_error(self, database):
        with pytest.raises(PreconditionError):
            database.is_submitted("nobody")

    def test_is_submitted_when_table_down_then_persistence_error(self, database, supabase):
        supabase.failing.add("students")
        with pytest.raises(PersistenceError):
            database.is_submitted("stu-1")

    def test_snapshot_when_saved_then_loaded_and_cleared(self, database, supabase):
        snapshot = {"session_id": "sess-1", "student_id": "stu-1", "class": "JSS1A", "state": "active",
                    "answers": {"q1": 0}, "violations": []}
        database.save(snapshot)
        database.save(dict(snapshot, answers={"q1": 2}))
        assert len(supabase.tables["exam_sessions"]) == 1
        assert supabase.tables["exam_sessions"][0]["id"] == "sess-1"
        assert database.load("stu-1") == dict(snapshot, answers={"q1": 2})
        database.clear("stu-1")
        assert database.load("stu-1") is None


class TestExamAgainstSupabase:
    def test_submit_when_exam_finished_then_result_row_and_student_marked(self, database, supabase):
        clock = FakeClock()
        controller = SessionController(database, database, database, database, time_limit_seconds=600, now=clock)
        controller.start("stu-1", "JSS1A", "Basic Science")
        controller.record_answer("q1", 0)
        controller.record_answer("q2", 3)
        clock.advance(90)
        result = controller.submit()

        rows = supabase.tables["exam_results"]
        assert len(rows) == 1
        assert rows[0]["id"] == result.id
        assert rows[0]["score"] == 1
        assert rows[0]["percentage"] == 33
        assert rows[0]["time_taken"] == 90
        assert rows[0]["submission_cause"] == "Manual"
        assert supabase.tables["students"][0]["has_submitted"] is True
        assert supabase.tables["exam_sessions"] == []

        upserts = [c for c in supabase.calls if c[0] == "exam_results"]
        assert upserts[0][3] == {"on_conflict": "id", "ignore_duplicates": True}

    def test_store_when_results_table_down_then_retry_succeeds(self, database, supabase):
        controller = SessionController(database, database, database, database, time_limit_seconds=600,
                                       now=FakeClock())
        controller.start("stu-1", "JSS1A", "Basic Science")
        supabase.failing.add("exam_results")
        with pytest.raises(PersistenceError):
            controller.submit()
        assert supabase.tables["students"][0]["has_submitted"] is False

        supabase.failing.clear()
        controller.retry_store()
        controller.retry_store()
        assert len(supabase.tables["exam_results"]) == 1
        assert supabase.tables["students"][0]["has_submitted"] is True
        assert controller.state is SessionState.COMPLETED

    def test_resume_when_snapshot_in_exam_sessions_then_continues(self, database):
        clock = FakeClock()
        first = SessionController(database, database, database, database, time_limit_seconds=600, now=clock)
        first.start("stu-1", "JSS1A", "Basic Science")
        first.record_answer("q3", 2)
        clock.advance(60)

        second = SessionController(database, database, database, database, time_limit_seconds=600, now=clock)
        assert second.resume("stu-1").id == first.session.id
        assert second.answers == {"q3": 2}
        assert second.remaining_seconds == 540


class TestDashboardQueries:
    def test_upsert_questions_bulk_when_duplicate_ids_then_deduped(self):
        client = FakeSupabase()
        rows = [question_row("a"), question_row("b"), question_row("a", correct=3)]
        upsert_questions_bulk(client, rows, chunk_size=1)
        assert len(client.tables["questions"]) == 2
        assert next(r for r in client.tables["questions"] if r["id"] == "a")["correct_answer"] == 3

    def test_get_question_counts_when_class_given_then_counts_by_subject(self, supabase):
        assert get_question_counts("JSS1A", client=supabase) == {"Basic Science": 4, "Mathematics": 1}

    def test_get_students_by_class(self, supabase):
        assert [s["id"] for s in get_students_by_class("JSS1A", client=supabase)] == ["stu-1", "stu-2"]

    def test_get_results_by_class_when_table_down_then_empty(self, supabase):
        supabase.failing.add("exam_results")
        assert get_results_by_class("JSS1A", client=supabase) == []

    def test_reset_student_submission_when_called_then_flag_cleared(self, supabase):
        reset_student_submission("stu-2", client=supabase)
        assert DatabaseClient(supabase).is_submitted("stu-2") is False
