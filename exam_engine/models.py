"""
Data model for the exam session engine.

Question and Result are frozen; Session is mutable but owned by exactly one
SessionController. Rows coming from / going to Supabase use the column names
of the ``questions``, ``exam_results`` and ``exam_sessions`` tables (see init_db.py).
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from exam_engine.errors import ValidationError


class SessionState(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    COMPLETED = "completed"
    FORCE_COMPLETED = "force_completed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.FORCE_COMPLETED, SessionState.EXPIRED})


class SubmissionCause(str, Enum):
    MANUAL = "Manual"
    TIMEOUT = "Timeout"
    VIOLATION_THRESHOLD = "ViolationThreshold"

    @property
    def terminal_state(self) -> SessionState:
        return {
            SubmissionCause.MANUAL: SessionState.COMPLETED,
            SubmissionCause.TIMEOUT: SessionState.EXPIRED,
            SubmissionCause.VIOLATION_THRESHOLD: SessionState.FORCE_COMPLETED,
        }[self]


def to_iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def from_iso(value) -> Optional[float]:
    """Accept epoch seconds or an ISO-8601 string (Supabase returns the latter)."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()


@dataclass(frozen=True)
class Question:
    """One multiple-choice question. ``options`` has at least two entries."""

    id: str
    class_tag: str
    subject: str
    text: str
    options: Tuple[str, ...]
    correct_option_index: int

    def __post_init__(self):
        if len(self.options) < 2:
            raise ValidationError(f"Question {self.id} needs at least 2 options, got {len(self.options)}")
        if not 0 <= self.correct_option_index < len(self.options):
            raise ValidationError(
                f"Question {self.id}: correct option {self.correct_option_index} out of range"
            )

    def has_option(self, option_index: int) -> bool:
        return isinstance(option_index, int) and not isinstance(option_index, bool) \
            and 0 <= option_index < len(self.options)

    @classmethod
    def from_row(cls, row: Dict) -> "Question":
        """Build from a ``questions`` row (id, class, subject, question_text, options, correct_answer)."""
        options = row.get("options") or []
        if not isinstance(options, (list, tuple)):
            raise ValidationError(f"Question {row.get('id')}: options must be a list")
        return cls(
            id=str(row["id"]),
            class_tag=row.get("class") or "",
            subject=row.get("subject") or "",
            text=row.get("question_text") or "",
            options=tuple(str(o) for o in options),
            correct_option_index=int(row.get("correct_answer", -1)),
        )

    def to_row(self) -> Dict:
        return {
            "id": self.id,
            "class": self.class_tag,
            "subject": self.subject,
            "question_text": self.text,
            "options": list(self.options),
            "correct_answer": self.correct_option_index,
        }


@dataclass
class Session:
    """
    One student's single attempt.

    Invariant: 0 <= current_index < len(ordered_question_ids).
    ``started_at`` is epoch seconds and is set when the session becomes Active.
    """

    id: str
    student_id: str
    class_tag: str
    subject: str
    ordered_question_ids: List[str]
    time_limit_seconds: int
    started_at: Optional[float] = None
    current_index: int = 0
    active: bool = False

    def to_snapshot(
        self,
        answers: Mapping[str, int],
        violations: List[Dict],
        state: SessionState,
        result: Optional[Dict] = None,
    ) -> Dict:
        """
        JSON-safe snapshot for the SnapshotStore.

        A terminal snapshot also carries the scored ``exam_results`` row, so a
        Result whose store failed survives a restart.
        """
        return {
            "session_id": self.id,
            "student_id": self.student_id,
            "class": self.class_tag,
            "subject": self.subject,
            "questions_order": list(self.ordered_question_ids),
            "started_at": to_iso(self.started_at),
            "time_limit": self.time_limit_seconds,
            "current_question_index": self.current_index,
            "is_active": self.active,
            "state": state.value,
            "answers": dict(answers),
            "violations": list(violations),
            "result": result,
        }

    @classmethod
    def from_snapshot(cls, snapshot: Dict) -> "Session":
        return cls(
            id=snapshot["session_id"],
            student_id=snapshot["student_id"],
            class_tag=snapshot.get("class") or "",
            subject=snapshot.get("subject") or "",
            ordered_question_ids=list(snapshot["questions_order"]),
            time_limit_seconds=int(snapshot["time_limit"]),
            started_at=from_iso(snapshot.get("started_at")),
            current_index=int(snapshot.get("current_question_index", 0)),
            active=bool(snapshot.get("is_active", False)),
        )


@dataclass(frozen=True)
class ScoreCard:
    score: int
    total_questions: int
    percentage: int
    grade: str


@dataclass(frozen=True)
class Result:
    """Immutable scored outcome of a terminal Session."""

    id: str
    session_id: str
    student_id: str
    class_tag: str
    subject: str
    answers: Mapping[str, int]
    score: int
    total_questions: int
    percentage: int
    grade: str
    time_taken_seconds: int
    violation_reasons: Tuple[str, ...]
    submitted_at: float
    submission_cause: SubmissionCause

    def __post_init__(self):
        # freeze the answer snapshot
        object.__setattr__(self, "answers", MappingProxyType(dict(self.answers)))
        object.__setattr__(self, "violation_reasons", tuple(self.violation_reasons))

    @property
    def flagged(self) -> bool:
        return bool(self.violation_reasons)

    def to_row(self) -> Dict:
        """Row for the ``exam_results`` table."""
        return {
            "id": self.id,
            "session_id": self.session_id,
            "student_id": self.student_id,
            "class": self.class_tag,
            "subject": self.subject,
            "answers": dict(self.answers),
            "score": self.score,
            "total_questions": self.total_questions,
            "percentage": self.percentage,
            "grade": self.grade,
            "time_taken": self.time_taken_seconds,
            "cheating_flags": list(self.violation_reasons),
            "submission_cause": self.submission_cause.value,
            "timestamp": to_iso(self.submitted_at),
        }

    @classmethod
    def from_row(cls, row: Dict) -> "Result":
        """Rebuild from an ``exam_results`` row (or the copy kept in a terminal snapshot)."""
        return cls(
            id=str(row["id"]),
            session_id=str(row["session_id"]),
            student_id=str(row["student_id"]),
            class_tag=row.get("class") or "",
            subject=row.get("subject") or "",
            answers={str(k): int(v) for k, v in (row.get("answers") or {}).items()},
            score=int(row["score"]),
            total_questions=int(row["total_questions"]),
            percentage=int(row["percentage"]),
            grade=row["grade"],
            time_taken_seconds=int(row.get("time_taken") or 0),
            violation_reasons=tuple(row.get("cheating_flags") or ()),
            submitted_at=from_iso(row.get("timestamp")) or 0.0,
            submission_cause=SubmissionCause(row["submission_cause"]),
        )
