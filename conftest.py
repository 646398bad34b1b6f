"""
Pytest configuration: fake clock, in-memory collaborators and a fake
Supabase client shared by the root-level test modules.
"""
import copy
from types import SimpleNamespace

import pytest

from exam_engine.controller import SessionController
from exam_engine.memory import (
    InMemoryQuestionPool,
    InMemoryResultSink,
    InMemorySnapshotStore,
    InMemoryStudentRecord,
)
from exam_engine.models import Question


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class FakeQuery:
    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.filters = []
        self.action = "select"
        self.payload = None
        self.options = {}
        self.window = None
        self.sort = None

    def select(self, *columns, **kwargs):
        self.action = "select"
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def limit(self, n):
        self.window = (0, n - 1)
        return self

    def range(self, start, end):
        self.window = (start, end)
        return self

    def order(self, column, desc=False):
        self.sort = (column, desc)
        return self

    def upsert(self, rows, **options):
        self.action, self.payload, self.options = "upsert", rows, options
        return self

    def update(self, values):
        self.action, self.payload = "update", values
        return self

    def delete(self):
        self.action = "delete"
        return self

    def _matches(self, row):
        return all(row.get(c) == v for c, v in self.filters)

    def execute(self):
        if self.table in self.db.failing:
            raise RuntimeError(f"{self.table} is unavailable")
        self.db.calls.append((self.table, self.action, copy.deepcopy(self.payload), dict(self.options)))
        rows = self.db.tables.setdefault(self.table, [])
        if self.action == "select":
            data = [copy.deepcopy(r) for r in rows if self._matches(r)]
            if self.sort:
                column, desc = self.sort
                data.sort(key=lambda r: r.get(column) or "", reverse=desc)
            if self.window:
                data = data[self.window[0]: self.window[1] + 1]
            return SimpleNamespace(data=data, count=len(data))
        if self.action == "upsert":
            key = self.options.get("on_conflict", "id")
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            for new in payload:
                existing = next((r for r in rows if r.get(key) == new.get(key)), None)
                if existing is None:
                    rows.append(copy.deepcopy(new))
                elif not self.options.get("ignore_duplicates"):
                    existing.update(copy.deepcopy(new))
            return SimpleNamespace(data=payload, count=None)
        if self.action == "update":
            changed = [r for r in rows if self._matches(r)]
            for r in changed:
                r.update(self.payload)
            return SimpleNamespace(data=changed, count=None)
        kept = [r for r in rows if not self._matches(r)]
        removed = len(rows) - len(kept)
        self.db.tables[self.table] = kept
        return SimpleNamespace(data=[], count=removed)


class FakeSupabase:
    """Just enough of supabase.Client's query builder for the database layer."""

    def __init__(self, tables=None):
        self.tables = tables or {}
        self.failing = set()
        self.calls = []

    def table(self, name):
        return FakeQuery(self, name)


def make_questions(n, class_tag="JSS1A", subject="Basic Science"):
    return [
        Question(f"q{i}", class_tag, subject, f"Question {i}?", ("w", "x", "y", "z"), i % 4)
        for i in range(1, n + 1)
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def questions():
    return make_questions(3)


@pytest.fixture
def pool(questions):
    return InMemoryQuestionPool(questions)


@pytest.fixture
def students():
    return InMemoryStudentRecord()


@pytest.fixture
def sink():
    return InMemoryResultSink()


@pytest.fixture
def snapshots():
    return InMemorySnapshotStore()


@pytest.fixture
def make_controller(pool, students, sink, snapshots, clock):
    """Factory so tests can override the time limit, threshold or collaborators."""

    def factory(**overrides):
        kwargs = dict(
            question_pool=pool,
            student_record=students,
            result_sink=sink,
            snapshot_store=snapshots,
            time_limit_seconds=600,
            max_violations=2,
            now=clock,
        )
        kwargs.update(overrides)
        return SessionController(**kwargs)

    return factory


@pytest.fixture
def controller(make_controller):
    return make_controller()


@pytest.fixture
def fake_supabase():
    return FakeSupabase()
