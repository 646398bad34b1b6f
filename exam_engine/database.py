"""
Database operations for ExamGuard.
Supabase-backed question pool, student record, result sink and session snapshots.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional

from dotenv import load_dotenv
from supabase import Client, create_client

from exam_engine.errors import PersistenceError, PreconditionError, ValidationError
from exam_engine.models import Question, Result

logger = logging.getLogger(__name__)

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")


class DatabaseClient:
    """Wrapper around Supabase client implementing the exam engine's collaborator ports."""

    def __init__(self, client: Optional[Client] = None):
        self.client: Client = client if client is not None else create_client(SUPABASE_URL, SUPABASE_KEY)

    # ============= Questions =============

    def fetch_questions(self, class_tag: str, subject: str) -> List[Question]:
        """
        Fetch the question pool for one class and subject.

        Malformed rows are skipped with a warning; a failed query yields an
        empty pool (the controller then refuses to start).
        """
        try:
            query = self.client.table("questions").select("*").eq("class", class_tag)
            if subject:
                query = query.eq("subject", subject)
            response = query.execute()
            rows = response.data if response.data else []
        except Exception as e:
            logger.error(f"Error fetching questions for {class_tag}/{subject}: {e}")
            return []

        questions = []
        for row in rows:
            try:
                questions.append(Question.from_row(row))
            except (ValidationError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed question {row.get('id')}: {e}")
        return questions

    # ============= Students =============

    def get_student(self, full_name: str, class_tag: str) -> Optional[Dict]:
        """Look up a student by full name and class (the exam login)."""
        try:
            response = (
                self.client.table("students")
                .select("*")
                .eq("full_name", full_name)
                .eq("class", class_tag)
                .limit(1)
                .execute()
            )
            return response.data[0] if response.data else None
        except Exception as e:
            logger.error(f"Error fetching student {full_name!r} ({class_tag}): {e}")
            return None

    def is_submitted(self, student_id: str) -> bool:
        try:
            response = (
                self.client.table("students")
                .select("id, has_submitted")
                .eq("id", student_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Could not read student {student_id}: {e}") from e
        if not response.data:
            raise PreconditionError(f"Unknown student {student_id}")
        return bool(response.data[0].get("has_submitted"))

    def mark_submitted(self, student_id: str) -> None:
        """Set has_submitted; repeating the update is harmless."""
        try:
            self.client.table("students").update({"has_submitted": True}).eq("id", student_id).execute()
        except Exception as e:
            raise PersistenceError(f"Could not mark {student_id} as submitted: {e}") from e

    # ============= Results =============

    def store(self, result: Result) -> None:
        """Insert the result once; an existing row with the same id is left untouched."""
        try:
            (
                self.client.table("exam_results")
                .upsert(result.to_row(), on_conflict="id", ignore_duplicates=True)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Could not store result {result.id}: {e}") from e
        logger.info(f"Stored result {result.id} ({result.score}/{result.total_questions})")

    # ============= Session snapshots =============

    def save(self, snapshot: Dict) -> None:
        """Upsert the in-progress snapshot (one row per student in exam_sessions)."""
        row = dict(snapshot)
        row["id"] = row.pop("session_id")
        row["updated_at"] = datetime.now(timezone.utc).isoformat()
        self.client.table("exam_sessions").upsert(row, on_conflict="student_id").execute()

    def load(self, student_id: str) -> Optional[Dict]:
        response = (
            self.client.table("exam_sessions")
            .select("*")
            .eq("student_id", student_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        snapshot = dict(response.data[0])
        snapshot["session_id"] = snapshot.pop("id")
        snapshot.pop("updated_at", None)
        return snapshot

    def clear(self, student_id: str) -> None:
        self.client.table("exam_sessions").delete().eq("student_id", student_id).execute()
