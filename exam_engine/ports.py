"""Collaborator contracts the SessionController depends on."""
from typing import Dict, List, Optional, Protocol

from exam_engine.models import Question, Result


class QuestionPool(Protocol):
    def fetch_questions(self, class_tag: str, subject: str) -> List[Question]:
        ...


class StudentRecord(Protocol):
    def is_submitted(self, student_id: str) -> bool:
        ...

    def mark_submitted(self, student_id: str) -> None:
        """Idempotent."""
        ...


class ResultSink(Protocol):
    def store(self, result: Result) -> None:
        """Store at most once per ``result.id``. Raises PersistenceError."""
        ...


class SnapshotStore(Protocol):
    def save(self, snapshot: Dict) -> None:
        ...

    def load(self, student_id: str) -> Optional[Dict]:
        ...

    def clear(self, student_id: str) -> None:
        ...
