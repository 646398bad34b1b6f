"""
Session Controller: owns one exam attempt from creation to its single Result.

States: Created -> Active -> {Completed, ForceCompleted, Expired}. Terminal
states are sticky. Every mutating call holds a per-session re-entrant lock,
so a timeout submit, an escalation submit and a user submit that race at the
deadline collapse into one terminal transition.
"""
import logging
import threading
import time
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional
from uuid import NAMESPACE_URL, uuid4, uuid5

from engine import EXAM_DURATION_MINUTES, MAX_VIOLATIONS
from exam_engine.clock import ClockTicker, ExamClock
from exam_engine.detectors import SignalKind, SignalSource, default_sources
from exam_engine.errors import (
    AlreadySubmittedError,
    EmptyPoolError,
    PersistenceError,
    PreconditionError,
    SessionClosedError,
    ValidationError,
)
from exam_engine.models import Question, Result, Session, SessionState, SubmissionCause
from exam_engine.monitor import ViolationEntry, ViolationMonitor
from exam_engine.ports import QuestionPool, ResultSink, SnapshotStore, StudentRecord
from exam_engine.scoring import score_session
from exam_engine.sequencer import QuestionSequencer, fix_order

logger = logging.getLogger(__name__)

NEXT, PREVIOUS = "next", "previous"


def result_id_for(session_id: str) -> str:
    """Deterministic Result id, so a retried store never creates a second record."""
    return str(uuid5(NAMESPACE_URL, f"exam-result:{session_id}"))


class SessionController:
    """
    Drives a single Session.

    Args:
        question_pool: Source of questions for (class, subject)
        student_record: has_submitted lookup and update
        result_sink: Durable store for the Result
        snapshot_store: Optional best-effort store for reload recovery
        time_limit_seconds: Exam duration
        max_violations: Escalation threshold for the Violation Monitor
        now: Wall-clock time source (epoch seconds)
        sources: Signal sources for the monitor (default: browser events + devtools heuristic)
    """

    def __init__(
        self,
        question_pool: QuestionPool,
        student_record: StudentRecord,
        result_sink: ResultSink,
        snapshot_store: Optional[SnapshotStore] = None,
        time_limit_seconds: int = EXAM_DURATION_MINUTES * 60,
        max_violations: int = MAX_VIOLATIONS,
        now: Callable[[], float] = time.time,
        sources: Optional[Iterable[SignalSource]] = None,
    ):
        self.question_pool = question_pool
        self.student_record = student_record
        self.result_sink = result_sink
        self.snapshot_store = snapshot_store
        self.time_limit_seconds = time_limit_seconds
        self._now = now
        self._lock = threading.RLock()

        self.state: Optional[SessionState] = None
        self.session: Optional[Session] = None
        self.result: Optional[Result] = None
        self._questions: Dict[str, Question] = {}
        self._sequencer: Optional[QuestionSequencer] = None
        self._answers: Dict[str, int] = {}
        self._stored = False
        self._ticker: Optional[ClockTicker] = None

        self.clock = ExamClock(time_limit_seconds, now=now)
        self.monitor = ViolationMonitor(max_violations, on_escalate=self._on_escalate, now=now)
        for source in (default_sources() if sources is None else sources):
            self.monitor.attach(source)
        self.monitor.subscribe(self._on_violation)

    # ============= Lifecycle =============

    def prepare(self, student_id: str, class_tag: str, subject: str) -> Session:
        """Create the Session (state Created) with a fixed question order."""
        with self._lock:
            if self.state is not None:
                raise PreconditionError(f"Session already {self.state.value}")
            self._check_not_submitted(student_id)
            snapshot = self._load_snapshot(student_id)
            if snapshot and _pending_result(snapshot):
                raise AlreadySubmittedError(
                    f"Student {student_id} has a submitted result awaiting storage; resume to retry saving"
                )

            pool = list(self.question_pool.fetch_questions(class_tag, subject))
            if not pool:
                raise EmptyPoolError(f"No questions for {class_tag}/{subject}")

            session_id = str(uuid4())
            order = fix_order(pool, seed=session_id)
            self._questions = {q.id: q for q in pool}
            self._sequencer = QuestionSequencer(order)
            self.session = Session(
                id=session_id,
                student_id=student_id,
                class_tag=class_tag,
                subject=subject,
                ordered_question_ids=order,
                time_limit_seconds=self.time_limit_seconds,
            )
            self.state = SessionState.CREATED
            logger.info(f"Session {session_id} created for {student_id}: {len(order)} questions")
            return self.session

    def start(
        self,
        student_id: Optional[str] = None,
        class_tag: Optional[str] = None,
        subject: Optional[str] = None,
        auto_tick: bool = False,
    ) -> Session:
        """Created -> Active: start the clock and arm the monitor."""
        with self._lock:
            if self.state is None:
                if student_id is None:
                    raise PreconditionError("start() needs a student, class and subject")
                self.prepare(student_id, class_tag or "", subject or "")
            elif self.state is not SessionState.CREATED:
                raise PreconditionError(f"Cannot start a session that is {self.state.value}")

            session = self.session
            self._check_not_submitted(session.student_id)
            self.clock.start()
            session.started_at = self.clock.started_at
            session.active = True
            self.state = SessionState.ACTIVE
            self.monitor.arm()
            self._save_snapshot()
            logger.info(f"Session {session.id} started ({session.time_limit_seconds}s limit)")

        if auto_tick:
            self._start_ticker()
        return session

    def resume(self, student_id: str, auto_tick: bool = False) -> Optional[Session]:
        """
        Rebuild an Active session from its snapshot after a reload.

        The clock continues from the original start time, so downtime is not
        refunded. A terminal snapshot whose Result was never stored is
        recovered and its store retried. Returns None when there is nothing
        (usable) to resume.
        """
        snapshot = self._load_snapshot(student_id)
        if snapshot and _pending_result(snapshot):
            return self._recover_result(student_id, snapshot)
        if not snapshot or snapshot.get("state") != SessionState.ACTIVE.value:
            return None

        with self._lock:
            if self.state is not None:
                raise PreconditionError(f"Session already {self.state.value}")
            if self.student_record.is_submitted(student_id):
                self._clear_snapshot(student_id)
                raise AlreadySubmittedError(f"Student {student_id} has already submitted")

            session = Session.from_snapshot(snapshot)
            if session.started_at is None or not session.ordered_question_ids:
                logger.warning(f"Snapshot for {student_id} is incomplete; not resuming")
                return None
            pool = {q.id: q for q in self.question_pool.fetch_questions(session.class_tag, session.subject)}
            missing = [qid for qid in session.ordered_question_ids if qid not in pool]
            if missing:
                logger.warning(f"Snapshot for {student_id} references {len(missing)} unknown questions; not resuming")
                return None

            self._questions = {qid: pool[qid] for qid in session.ordered_question_ids}
            self._sequencer = QuestionSequencer(session.ordered_question_ids, position=session.current_index)
            session.current_index = self._sequencer.position
            self._answers = {
                qid: idx for qid, idx in (snapshot.get("answers") or {}).items()
                if qid in self._questions and self._questions[qid].has_option(idx)
            }
            self.monitor.restore(ViolationEntry.from_dict(v) for v in snapshot.get("violations") or [])

            self.session = session
            self.clock = ExamClock(session.time_limit_seconds, now=self._now)
            self.clock.start(started_at=session.started_at)
            session.active = True
            self.state = SessionState.ACTIVE
            logger.info(
                f"Session {session.id} resumed at question {session.current_index + 1}, "
                f"{self.clock.remaining:.0f}s left, {self.monitor.count} prior violations"
            )
            # restored violations may already be over the threshold
            self.monitor.arm()
            if self.state is SessionState.ACTIVE:
                self.tick()

        if auto_tick and self.state is SessionState.ACTIVE:
            self._start_ticker()
        return session

    def _recover_result(self, student_id: str, snapshot: Dict) -> Session:
        """Reload a scored attempt from its terminal snapshot and retry the store."""
        with self._lock:
            if self.state is not None:
                raise PreconditionError(f"Session already {self.state.value}")
            if self.student_record.is_submitted(student_id):
                self._clear_snapshot(student_id)
                raise AlreadySubmittedError(f"Student {student_id} has already submitted")

            session = Session.from_snapshot(snapshot)
            self.session = session
            self.result = Result.from_row(snapshot["result"])
            self.state = SessionState(snapshot["state"])
            self._answers = dict(self.result.answers)
            pool = {q.id: q for q in self.question_pool.fetch_questions(session.class_tag, session.subject)}
            self._questions = {qid: pool[qid] for qid in session.ordered_question_ids if qid in pool}
            self.monitor.disarm()
            logger.warning(f"Session {session.id} recovered as {self.state.value} with result {self.result.id} unstored")
            try:
                self._handoff(self.result)
            except PersistenceError:
                logger.error(f"Result {self.result.id} still pending after recovery")
            return session

    # ============= Answers & navigation =============

    def record_answer(self, question_id: str, option_index: int) -> None:
        """Record (or overwrite) the answer for one question of this session."""
        with self._lock:
            self._require_active()
            question = self._questions.get(question_id)
            if question is None:
                raise ValidationError(f"Question {question_id} is not part of this session")
            if not question.has_option(option_index):
                raise ValidationError(
                    f"Option {option_index!r} out of range for question {question_id} "
                    f"({len(question.options)} options)"
                )
            self._answers[question_id] = option_index
            self._save_snapshot()

    def navigate(self, direction) -> int:
        """Move to the next/previous question, clamped at both ends."""
        step = _step(direction)
        with self._lock:
            if self.state is not SessionState.ACTIVE or self._expire_if_due():
                return self.session.current_index if self.session else 0
            index = self._sequencer.advance() if step > 0 else self._sequencer.retreat()
            self.session.current_index = index
            self._save_snapshot()
            return index

    def current_question(self) -> Optional[Question]:
        if self._sequencer is None:
            return None
        return self._questions[self._sequencer.current_id]

    def selected_option(self, question_id: str) -> Optional[int]:
        return self._answers.get(question_id)

    @property
    def answers(self) -> Mapping[str, int]:
        return MappingProxyType(dict(self._answers))

    @property
    def questions(self) -> List[Question]:
        if self.session is None:
            return []
        return [self._questions[qid] for qid in self.session.ordered_question_ids]

    # ============= Clock =============

    def tick(self, now: Optional[float] = None) -> float:
        """Recompute remaining time; reaching zero submits with cause Timeout."""
        with self._lock:
            if self.state is not SessionState.ACTIVE:
                return self.clock.remaining
            remaining = self.clock.tick(now)
            if remaining <= 0:
                logger.info(f"Session {self.session.id}: time is up")
                self._auto_submit(SubmissionCause.TIMEOUT)
            return remaining

    @property
    def remaining_seconds(self) -> float:
        return self.clock.remaining

    # ============= Violations =============

    def observe(self, payload: Dict) -> List[ViolationEntry]:
        """Feed one raw runtime event (browser event, viewport sample) to the monitor."""
        with self._lock:
            return self.monitor.observe(payload)

    def observe_many(self, payloads: Iterable[Dict]) -> List[ViolationEntry]:
        """Raw events relayed in one batch; escalation is evaluated once."""
        with self._lock:
            return self.monitor.observe_many(list(payloads))

    def report_violation(self, kind: SignalKind, detail: Optional[str] = None) -> Optional[ViolationEntry]:
        with self._lock:
            return self.monitor.report(kind, detail)

    def report_violations(self, signals) -> List[ViolationEntry]:
        """Signals observed in the same instant; escalation is evaluated once."""
        with self._lock:
            return self.monitor.report_many(list(signals))

    @property
    def violation_count(self) -> int:
        return self.monitor.count

    def _on_violation(self, entry: ViolationEntry) -> None:
        with self._lock:
            if self.state is SessionState.ACTIVE:
                self._save_snapshot()

    def _on_escalate(self, log: List[ViolationEntry]) -> None:
        self._auto_submit(SubmissionCause.VIOLATION_THRESHOLD)

    # ============= Submission =============

    def submit(self, cause=SubmissionCause.MANUAL) -> Result:
        """
        Finish the attempt exactly once.

        Freeze answers, disarm the monitor, stop the clock, score, hand the
        Result to the sink, then mark the session inactive. Any later call
        returns the same Result.
        A submit that arrives after the deadline is recorded as Timeout.

        Raises:
            SessionClosedError: the session was never started
            PersistenceError: the sink failed; the Result is kept (see retry_store)
        """
        cause = SubmissionCause(cause)
        with self._lock:
            if self.result is not None:
                logger.info(
                    f"Session {self.session.id} already {self.state.value}; ignoring {cause.value} submit"
                )
                return self.result
            if self.state is not SessionState.ACTIVE:
                raise SessionClosedError("Cannot submit a session that has not started")
            if cause is not SubmissionCause.TIMEOUT and self.clock.tick() <= 0:
                logger.info(f"Session {self.session.id}: {cause.value} submit after the deadline counts as Timeout")
                cause = SubmissionCause.TIMEOUT

            session = self.session
            self.state = cause.terminal_state
            answers = dict(self._answers)
            self.monitor.disarm()
            remaining = self.clock.stop()
            self._stop_ticker()

            card = score_session(self.questions, answers)
            self.result = Result(
                id=result_id_for(session.id),
                session_id=session.id,
                student_id=session.student_id,
                class_tag=session.class_tag,
                subject=session.subject,
                answers=answers,
                score=card.score,
                total_questions=card.total_questions,
                percentage=card.percentage,
                grade=card.grade,
                time_taken_seconds=int(round(session.time_limit_seconds - remaining)),
                violation_reasons=self.monitor.reasons,
                submitted_at=self._now(),
                submission_cause=cause,
            )
            logger.info(
                f"Session {session.id} {self.state.value} ({cause.value}): "
                f"{card.score}/{card.total_questions} ({card.percentage}%, {card.grade}), "
                f"{len(self.result.violation_reasons)} violations"
            )
            self._save_snapshot()
            self._handoff(self.result)
            return self.result

    def retry_store(self) -> Result:
        """Retry the sink handoff after a PersistenceError. No-op once stored."""
        with self._lock:
            if self.result is None:
                raise SessionClosedError("Nothing has been submitted yet")
            if not self._stored:
                self._handoff(self.result)
            return self.result

    @property
    def stored(self) -> bool:
        return self._stored

    @property
    def store_pending(self) -> bool:
        return self.result is not None and not self._stored

    def _handoff(self, result: Result) -> None:
        try:
            self.result_sink.store(result)
            self.student_record.mark_submitted(result.student_id)
        except PersistenceError as e:
            logger.error(f"Storing result {result.id} failed: {e}")
            raise PersistenceError(str(e), result=result) from e
        except Exception as e:
            logger.error(f"Storing result {result.id} failed: {e}")
            raise PersistenceError(f"Could not store result: {e}", result=result) from e
        self._stored = True
        self._clear_snapshot(result.student_id)
        self.session.active = False
        logger.info(f"Result {result.id} stored for {result.student_id}")

    def _auto_submit(self, cause: SubmissionCause) -> Optional[Result]:
        """Submission triggered by the clock or the monitor: never raises into them."""
        try:
            return self.submit(cause)
        except PersistenceError as e:
            logger.error(f"Automatic {cause.value} submission kept in memory, store pending: {e}")
            return e.result

    # ============= Helpers =============

    def progress(self) -> Dict:
        """Real-time summary for the exam screen."""
        total = len(self.session.ordered_question_ids) if self.session else 0
        answered = len(self._answers)
        return {
            "session_id": self.session.id if self.session else None,
            "state": self.state.value if self.state else None,
            "current_question": (self.session.current_index + 1) if self.session else 0,
            "total_questions": total,
            "answered": answered,
            "unanswered": total - answered,
            "time_remaining_sec": self.clock.remaining,
            "violations": self.monitor.count,
            "max_violations": self.monitor.max_violations,
        }

    def _require_active(self) -> None:
        if self.state is not SessionState.ACTIVE:
            state = self.state.value if self.state else "not started"
            raise SessionClosedError(f"Session is {state}")
        if self._expire_if_due():
            raise SessionClosedError("Time is up; the exam was submitted")

    def _expire_if_due(self) -> bool:
        """Enforce the deadline even when nobody has ticked the clock."""
        if self.clock.tick() <= 0:
            self._auto_submit(SubmissionCause.TIMEOUT)
            return True
        return False

    def _check_not_submitted(self, student_id: str) -> None:
        if self.student_record.is_submitted(student_id):
            raise AlreadySubmittedError(f"Student {student_id} has already submitted")

    def _start_ticker(self) -> None:
        with self._lock:
            if self._ticker is None and self.state is SessionState.ACTIVE:
                self._ticker = ClockTicker(self.tick)
                self._ticker.start()

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.stop()

    def _save_snapshot(self) -> None:
        if self.snapshot_store is None or self.session is None:
            return
        try:
            self.snapshot_store.save(
                self.session.to_snapshot(
                    self._answers,
                    [e.to_dict() for e in self.monitor.log],
                    self.state,
                    result=self.result.to_row() if self.result is not None else None,
                )
            )
        except Exception as e:
            logger.warning(f"Snapshot save failed for session {self.session.id}: {e}")

    def _load_snapshot(self, student_id: str) -> Optional[Dict]:
        if self.snapshot_store is None:
            return None
        try:
            return self.snapshot_store.load(student_id)
        except Exception as e:
            logger.warning(f"Snapshot load failed for {student_id}: {e}")
            return None

    def _clear_snapshot(self, student_id: str) -> None:
        if self.snapshot_store is None:
            return
        try:
            self.snapshot_store.clear(student_id)
        except Exception as e:
            logger.warning(f"Snapshot clear failed for {student_id}: {e}")


def _pending_result(snapshot: Dict) -> bool:
    """A terminal snapshot that still holds its scored Result row."""
    terminal = {s.value for s in SessionState if s.is_terminal}
    return snapshot.get("state") in terminal and bool(snapshot.get("result"))


def _step(direction) -> int:
    if direction in (NEXT, 1, "+1"):
        return 1
    if direction in (PREVIOUS, "prev", -1, "-1"):
        return -1
    raise ValidationError(f"Unknown navigation direction {direction!r}")
