"""
Violation Monitor: counts integrity violations and escalates once.

Sources (see detectors.py) emit SignalKinds into the monitor; each accepted
signal is appended to the ViolationLog and published to subscribers. When the
running count reaches ``max_violations`` the escalation callback runs exactly
once. After escalation the monitor keeps logging until it is disarmed.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from engine import MAX_VIOLATIONS
from exam_engine.detectors import SignalKind, SignalSource, reason_code

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ViolationEntry:
    sequence: int
    timestamp: float
    kind: SignalKind
    reason_code: str

    def to_dict(self) -> Dict:
        return {
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "kind": self.kind.value,
            "reason_code": self.reason_code,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ViolationEntry":
        return cls(
            sequence=int(data["sequence"]),
            timestamp=float(data["timestamp"]),
            kind=SignalKind(data["kind"]),
            reason_code=data["reason_code"],
        )


class ViolationMonitor:
    """
    Lifecycle: idle -> armed -> disarmed. A disarmed monitor stays disarmed.

    Args:
        max_violations: Escalation threshold (>= 1)
        on_escalate: Called once with the log snapshot when the threshold is reached
        now: Time source for entry timestamps (epoch seconds)
    """

    def __init__(
        self,
        max_violations: int = MAX_VIOLATIONS,
        on_escalate: Optional[Callable[[List[ViolationEntry]], None]] = None,
        now: Callable[[], float] = time.time,
    ):
        if max_violations < 1:
            raise ValueError("max_violations must be at least 1")
        self.max_violations = max_violations
        self.on_escalate = on_escalate
        self._now = now
        self._lock = threading.RLock()
        self._log: List[ViolationEntry] = []
        self._sources: List[SignalSource] = []
        self._subscribers: List[Callable[[ViolationEntry], None]] = []
        self._armed = False
        self._disarmed = False
        self._escalated = False

    # ---- lifecycle ----

    @property
    def armed(self) -> bool:
        return self._armed

    @property
    def escalated(self) -> bool:
        return self._escalated

    def attach(self, source: SignalSource) -> None:
        """Register a signal source; it is bound while the monitor is armed."""
        with self._lock:
            if self._disarmed:
                logger.warning(f"Ignoring {source.name}: monitor already disarmed")
                return
            self._sources.append(source)
            if self._armed:
                source.bind(self._emitter(source))

    def restore(self, entries: Iterable[ViolationEntry]) -> None:
        """Preload history from a snapshot. Only allowed before arming."""
        with self._lock:
            if self._armed or self._disarmed:
                raise RuntimeError("restore() must run before arm()")
            self._log = sorted(entries, key=lambda e: e.sequence)

    def arm(self) -> bool:
        with self._lock:
            if self._disarmed:
                logger.warning("Monitor was disarmed and cannot be re-armed")
                return False
            if self._armed:
                return True
            self._armed = True
            for source in self._sources:
                source.bind(self._emitter(source))
            logger.info(f"Monitor armed ({len(self._sources)} sources, threshold {self.max_violations})")
        # restored history may already be over the threshold
        self._maybe_escalate()
        return True

    def disarm(self) -> None:
        with self._lock:
            if self._disarmed:
                return
            self._armed = False
            self._disarmed = True
            for source in self._sources:
                source.unbind()
            self._sources.clear()
            self._subscribers.clear()
            logger.info(f"Monitor disarmed after {len(self._log)} violations")

    # ---- channel ----

    def subscribe(self, listener: Callable[[ViolationEntry], None]) -> Callable[[], None]:
        """Receive every recorded violation. Returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._subscribers:
                    self._subscribers.remove(listener)

        return unsubscribe

    def _emitter(self, source: SignalSource) -> Callable:
        """Emit function for one source, limited to the kinds it declares."""

        def emit(kind: SignalKind, detail: Optional[str] = None) -> Optional[ViolationEntry]:
            if not _admits(source, kind):
                return None
            return self.report(kind, detail)

        return emit

    def observe(self, payload: Dict) -> List[ViolationEntry]:
        """Route a raw payload to every source that understands it."""
        recorded = []
        for source in list(self._sources):
            if source.accepts(payload):
                entry = source.feed(payload)
                if entry is not None:
                    recorded.append(entry)
        return recorded

    def observe_many(self, payloads: Iterable[Dict]) -> List[ViolationEntry]:
        """Classify payloads relayed together, then record them as one batch."""
        signals = []
        for payload in payloads:
            for source in list(self._sources):
                if source.bound and source.accepts(payload):
                    signal = source.signal_for(payload)
                    if signal is not None and _admits(source, signal[0]):
                        signals.append(signal)
        return self.report_many(signals) if signals else []

    # ---- reporting ----

    @property
    def count(self) -> int:
        return len(self._log)

    @property
    def log(self) -> List[ViolationEntry]:
        with self._lock:
            return list(self._log)

    @property
    def reasons(self) -> List[str]:
        return [e.reason_code for e in self.log]

    def report(self, kind: SignalKind, detail: Optional[str] = None) -> Optional[ViolationEntry]:
        entries = self.report_many([(kind, detail)])
        return entries[0] if entries else None

    def report_many(self, signals: Sequence) -> List[ViolationEntry]:
        """
        Record a batch of signals that arrived in the same instant, then
        evaluate escalation once. Each item is a SignalKind or (kind, detail).
        An unknown kind raises ValueError and none of the batch is recorded.
        """
        parsed = [_split(signal) for signal in signals]
        recorded = []
        with self._lock:
            if not self._armed:
                logger.debug(f"Dropping {len(parsed)} signals: monitor not armed")
                return []
            timestamp = self._now()
            for kind, detail in parsed:
                entry = ViolationEntry(
                    sequence=len(self._log) + 1,
                    timestamp=timestamp,
                    kind=kind,
                    reason_code=reason_code(kind, detail),
                )
                self._log.append(entry)
                recorded.append(entry)
                logger.warning(f"Violation {entry.sequence}/{self.max_violations}: {entry.reason_code}")
            subscribers = list(self._subscribers)
        for entry in recorded:
            for listener in subscribers:
                try:
                    listener(entry)
                except Exception as e:
                    logger.error(f"Violation subscriber failed: {e}")
        self._maybe_escalate()
        return recorded

    def _maybe_escalate(self) -> None:
        with self._lock:
            if self._escalated or not self._armed or len(self._log) < self.max_violations:
                return
            # set before calling out so re-entrant reports cannot fire twice
            self._escalated = True
            snapshot = list(self._log)
            callback = self.on_escalate
        logger.warning(f"Violation threshold reached ({len(snapshot)}/{self.max_violations}); escalating")
        if callback is not None:
            callback(snapshot)


def _split(signal) -> Tuple[SignalKind, Optional[str]]:
    if isinstance(signal, tuple):
        kind, detail = signal
    else:
        kind, detail = signal, None
    return SignalKind(kind), detail


def _admits(source: SignalSource, kind) -> bool:
    if kind in source.kinds:
        return True
    logger.warning(f"{source.name} emitted {kind!r} outside its capability set; ignored")
    return False
