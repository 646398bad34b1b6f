"""In-process collaborators: offline demo mode and tests."""
import copy
import logging
from typing import Dict, Iterable, List, Optional

from exam_engine.models import Question, Result

logger = logging.getLogger(__name__)


class InMemoryQuestionPool:
    def __init__(self, questions: Iterable[Question] = ()):
        self.questions = list(questions)

    def fetch_questions(self, class_tag: str, subject: str) -> List[Question]:
        return [
            q for q in self.questions
            if q.class_tag == class_tag and (not subject or q.subject == subject)
        ]


class InMemoryStudentRecord:
    def __init__(self, submitted: Iterable[str] = ()):
        self.submitted = set(submitted)

    def is_submitted(self, student_id: str) -> bool:
        return student_id in self.submitted

    def mark_submitted(self, student_id: str) -> None:
        self.submitted.add(student_id)


class InMemoryResultSink:
    """Keeps one record per Result id; a repeated store is ignored."""

    def __init__(self):
        self.results: Dict[str, Result] = {}
        self.store_calls = 0

    def store(self, result: Result) -> None:
        self.store_calls += 1
        if result.id in self.results:
            logger.info(f"Result {result.id} already stored; ignoring duplicate")
            return
        self.results[result.id] = result


class InMemorySnapshotStore:
    def __init__(self):
        self.snapshots: Dict[str, Dict] = {}

    def save(self, snapshot: Dict) -> None:
        self.snapshots[snapshot["student_id"]] = copy.deepcopy(snapshot)

    def load(self, student_id: str) -> Optional[Dict]:
        snapshot = self.snapshots.get(student_id)
        return copy.deepcopy(snapshot) if snapshot is not None else None

    def clear(self, student_id: str) -> None:
        self.snapshots.pop(student_id, None)


DEMO_QUESTIONS = [
    Question("demo-1", "JSS1A", "Basic Science", "What is the capital of France?",
             ("London", "Berlin", "Paris", "Madrid"), 2),
    Question("demo-2", "JSS1A", "Basic Science", "Which planet is known as the Red Planet?",
             ("Venus", "Mars", "Jupiter", "Saturn"), 1),
    Question("demo-3", "JSS1A", "Basic Science", "What is 2 + 2?",
             ("3", "4", "5", "6"), 1),
]
