"""
Authoritative exam countdown.

Remaining time is always recomputed from wall-clock deltas against
``started_at``, never by counting ticks, so a suspended process (or a client
that stops ticking) cannot gain time. Remaining time never increases.
"""
import logging
import threading
import time
from typing import Callable, Optional

from engine import TICK_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class ExamClock:
    def __init__(self, time_limit_seconds: int, now: Callable[[], float] = time.time):
        if time_limit_seconds <= 0:
            raise ValueError("time_limit_seconds must be positive")
        self.time_limit_seconds = time_limit_seconds
        self._now = now
        self.started_at: Optional[float] = None
        self._remaining = float(time_limit_seconds)
        self._stopped = False

    @property
    def running(self) -> bool:
        return self.started_at is not None and not self._stopped

    def start(self, started_at: Optional[float] = None) -> float:
        """Start now, or continue from an earlier ``started_at`` (resume)."""
        self.started_at = self._now() if started_at is None else started_at
        self._stopped = False
        return self.tick()

    def stop(self) -> float:
        """Freeze the countdown; returns remaining seconds at the stop instant."""
        if self.running:
            self.tick()
        self._stopped = True
        return self._remaining

    def tick(self, now: Optional[float] = None) -> float:
        """Recompute remaining seconds, clamped to [0, time_limit]."""
        if self.started_at is None or self._stopped:
            return self._remaining
        current = self._now() if now is None else now
        elapsed = max(0.0, current - self.started_at)
        remaining = max(0.0, self.time_limit_seconds - elapsed)
        self._remaining = min(self._remaining, remaining)
        return self._remaining

    @property
    def remaining(self) -> float:
        return self._remaining

    @property
    def expired(self) -> bool:
        return self._remaining <= 0


def format_time(seconds: float) -> str:
    """MM:SS (or H:MM:SS) for the countdown display."""
    total = int(max(0, seconds) + 0.999)  # show 00:01 until it really hits zero
    h, rest = divmod(total, 3600)
    m, s = divmod(rest, 60)
    if h:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m:02d}:{s:02d}"


class ClockTicker:
    """Daemon thread calling ``on_tick`` every ``interval`` seconds until stopped."""

    def __init__(self, on_tick: Callable[[], object], interval: float = TICK_INTERVAL_SECONDS):
        self.on_tick = on_tick
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="exam-clock", daemon=True)
        self._thread.start()

    def stop(self, wait: bool = False) -> None:
        """Signal the thread to exit; ``wait`` joins it (never from the tick itself)."""
        self._stop.set()
        thread = self._thread
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval * 2 + 1)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.on_tick()
            except Exception as e:
                logger.error(f"Clock tick failed: {e}")
