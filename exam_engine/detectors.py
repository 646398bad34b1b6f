"""
Signal sources for the Violation Monitor.

Every source turns raw runtime payloads (browser events relayed by the UI,
viewport samples) into at most one SignalKind. Sources are bound to a monitor
with ``bind(emit)`` and cut off with ``unbind()``; an unbound source drops
everything it is fed.

Classification errors never reach the exam: they are logged and treated as
"no violation observed".
"""
import logging
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional, Tuple

from engine import DEVTOOLS_GAP_PX

logger = logging.getLogger(__name__)


class SignalKind(str, Enum):
    FOCUS_LOSS = "focus-loss"
    VISIBILITY_LOSS = "visibility-loss"
    NAVIGATION_ATTEMPT = "navigation-attempt"
    UNLOAD_ATTEMPT = "unload-attempt"
    BLOCKED_SHORTCUT = "blocked-shortcut"
    CONTEXT_MENU = "context-menu"
    HEURISTIC_DEVTOOLS = "heuristic-devtools-open"


# Shortcut details carried by BLOCKED_SHORTCUT signals
COPY, PASTE, CUT, SELECT_ALL, PRINT, DEVTOOLS, REFRESH, SWITCH_WINDOW = (
    "copy", "paste", "cut", "select-all", "print", "devtools", "refresh", "switch-window",
)


def reason_code(kind: SignalKind, detail: Optional[str] = None) -> str:
    """One reason code per occurrence, e.g. 'focus-loss' or 'blocked-shortcut:copy'."""
    kind = SignalKind(kind)
    if kind is SignalKind.BLOCKED_SHORTCUT and detail:
        return f"{kind.value}:{detail}"
    return kind.value


REASON_LABELS = {
    "focus-loss": "Window lost focus",
    "visibility-loss": "Tab switched or window hidden",
    "navigation-attempt": "Attempted to navigate away",
    "unload-attempt": "Attempted to leave page",
    "context-menu": "Right-click attempted",
    "heuristic-devtools-open": "Developer tools opened",
    "blocked-shortcut": "Blocked shortcut used",
    "blocked-shortcut:copy": "Copy attempted",
    "blocked-shortcut:paste": "Paste attempted",
    "blocked-shortcut:cut": "Cut attempted",
    "blocked-shortcut:select-all": "Select-all attempted",
    "blocked-shortcut:print": "Print attempted",
    "blocked-shortcut:devtools": "Developer tools access attempted",
    "blocked-shortcut:refresh": "Page refresh attempted",
    "blocked-shortcut:switch-window": "Alt+Tab attempted",
}


def describe_reason(code: str) -> str:
    return REASON_LABELS.get(code, code)


Emit = Callable[[SignalKind, Optional[str]], object]


class SignalSource:
    """Base class: a capability set of signal kinds plus a classifier."""

    name = "source"
    kinds: FrozenSet[SignalKind] = frozenset()
    event_types: FrozenSet[str] = frozenset()

    def __init__(self):
        self._emit: Optional[Emit] = None

    @property
    def bound(self) -> bool:
        return self._emit is not None

    def bind(self, emit: Emit) -> None:
        self._emit = emit

    def unbind(self) -> None:
        self._emit = None

    def accepts(self, payload: Dict) -> bool:
        return isinstance(payload, dict) and payload.get("type") in self.event_types

    def classify(self, payload: Dict) -> Optional[Tuple[SignalKind, Optional[str]]]:
        raise NotImplementedError

    def signal_for(self, payload: Dict) -> Optional[Tuple[SignalKind, Optional[str]]]:
        """Classify without emitting; a classifier error counts as no signal."""
        try:
            return self.classify(payload)
        except Exception as e:
            logger.warning(f"{self.name}: could not classify {payload!r}: {e}")
            return None

    def feed(self, payload: Dict):
        """Classify one payload and emit the signal, if any. Returns whatever emit returned."""
        emit = self._emit
        if emit is None:
            return None
        signal = self.signal_for(payload)
        if signal is None:
            return None
        kind, detail = signal
        return emit(kind, detail)


class BrowserEventSource(SignalSource):
    """
    Reliable browser signals relayed from the exam page.

    Payload shape mirrors DOM events: {"type": "keydown", "key": "c", "ctrlKey": true}.
    A blur that follows the tab becoming hidden is not counted twice.
    """

    name = "browser-events"
    kinds = frozenset({
        SignalKind.FOCUS_LOSS,
        SignalKind.VISIBILITY_LOSS,
        SignalKind.NAVIGATION_ATTEMPT,
        SignalKind.UNLOAD_ATTEMPT,
        SignalKind.BLOCKED_SHORTCUT,
        SignalKind.CONTEXT_MENU,
    })
    event_types = frozenset({
        "contextmenu", "keydown", "visibilitychange", "blur", "focus", "beforeunload", "popstate",
    })

    def __init__(self):
        super().__init__()
        self.tab_active = True

    def classify(self, payload: Dict):
        event_type = payload.get("type")
        if event_type == "contextmenu":
            return SignalKind.CONTEXT_MENU, None
        if event_type == "keydown":
            detail = classify_shortcut(payload)
            return (SignalKind.BLOCKED_SHORTCUT, detail) if detail else None
        if event_type == "visibilitychange":
            if payload.get("hidden"):
                self.tab_active = False
                return SignalKind.VISIBILITY_LOSS, None
            self.tab_active = True
            return None
        if event_type == "blur":
            return (SignalKind.FOCUS_LOSS, None) if self.tab_active else None
        if event_type == "focus":
            self.tab_active = True
            return None
        if event_type == "beforeunload":
            return SignalKind.UNLOAD_ATTEMPT, None
        if event_type == "popstate":
            return SignalKind.NAVIGATION_ATTEMPT, None
        return None


def classify_shortcut(event: Dict) -> Optional[str]:
    """Map a keydown payload to a blocked-shortcut detail, or None if the key is allowed."""
    key = str(event.get("key") or "")
    lower = key.lower()
    ctrl = bool(event.get("ctrlKey") or event.get("metaKey"))
    shift = bool(event.get("shiftKey"))
    alt = bool(event.get("altKey"))

    if key == "F12" or (ctrl and shift and lower in ("i", "j")) or (ctrl and lower == "u"):
        return DEVTOOLS
    if key == "F5" or (ctrl and lower == "r"):
        return REFRESH
    if ctrl and lower == "p":
        return PRINT
    if alt and key == "Tab":
        return SWITCH_WINDOW
    if ctrl:
        return {"c": COPY, "v": PASTE, "x": CUT, "a": SELECT_ALL}.get(lower)
    return None


class DevtoolsHeuristic(SignalSource):
    """
    Best-effort devtools detection. False negatives are expected.

    Accepts viewport samples {"type": "viewport", "outerWidth", "innerWidth",
    "outerHeight", "innerHeight"} and console-trap hits {"type": "devtools-console"}.
    Latches after the first hit, like a one-shot alarm.
    """

    name = "devtools-heuristic"
    kinds = frozenset({SignalKind.HEURISTIC_DEVTOOLS})
    event_types = frozenset({"viewport", "devtools-console"})

    def __init__(self, gap_px: int = DEVTOOLS_GAP_PX):
        super().__init__()
        self.gap_px = gap_px
        self.tripped = False

    def classify(self, payload: Dict):
        if self.tripped:
            return None
        if payload.get("type") == "devtools-console":
            hit = True
        else:
            width_gap = int(payload["outerWidth"]) - int(payload["innerWidth"])
            height_gap = int(payload["outerHeight"]) - int(payload["innerHeight"])
            hit = width_gap > self.gap_px or height_gap > self.gap_px
        if not hit:
            return None
        self.tripped = True
        return SignalKind.HEURISTIC_DEVTOOLS, None


def default_sources():
    return [BrowserEventSource(), DevtoolsHeuristic()]
