"""Tests for browser event classification and the devtools heuristic."""
import pytest

from exam_engine.detectors import (
    BrowserEventSource,
    DevtoolsHeuristic,
    SignalKind,
    classify_shortcut,
    describe_reason,
    reason_code,
)


class TestClassifyShortcut:
    @pytest.mark.parametrize(
        "event, expected",
        [
            ({"key": "c", "ctrlKey": True}, "copy"),
            ({"key": "V", "ctrlKey": True}, "paste"),
            ({"key": "x", "metaKey": True}, "cut"),
            ({"key": "a", "ctrlKey": True}, "select-all"),
            ({"key": "p", "ctrlKey": True}, "print"),
            ({"key": "F12"}, "devtools"),
            ({"key": "I", "ctrlKey": True, "shiftKey": True}, "devtools"),
            ({"key": "j", "ctrlKey": True, "shiftKey": True}, "devtools"),
            ({"key": "u", "ctrlKey": True}, "devtools"),
            ({"key": "F5"}, "refresh"),
            ({"key": "r", "ctrlKey": True}, "refresh"),
            ({"key": "Tab", "altKey": True}, "switch-window"),
        ],
    )
    def test_classify_when_blocked_combo_then_returns_detail(self, event, expected):
        assert classify_shortcut(event) == expected

    @pytest.mark.parametrize("event", [{"key": "c"}, {"key": "Tab"}, {"key": "z", "ctrlKey": True}, {}])
    def test_classify_when_allowed_key_then_none(self, event):
        assert classify_shortcut(event) is None


class TestBrowserEventSource:
    @pytest.fixture
    def emitted(self):
        return []

    @pytest.fixture
    def source(self, emitted):
        src = BrowserEventSource()
        src.bind(lambda kind, detail: emitted.append(reason_code(kind, detail)))
        return src

    def test_feed_when_hidden_then_blur_not_counted_twice(self, source, emitted):
        source.feed({"type": "visibilitychange", "hidden": True})
        source.feed({"type": "blur"})
        assert emitted == ["visibility-loss"]

    def test_feed_when_visible_again_then_blur_counts(self, source, emitted):
        source.feed({"type": "visibilitychange", "hidden": True})
        source.feed({"type": "visibilitychange", "hidden": False})
        source.feed({"type": "blur"})
        assert emitted == ["visibility-loss", "focus-loss"]

    def test_feed_when_navigation_events_then_reported(self, source, emitted):
        source.feed({"type": "popstate"})
        source.feed({"type": "beforeunload"})
        source.feed({"type": "contextmenu"})
        source.feed({"type": "keydown", "key": "c", "ctrlKey": True})
        assert emitted == ["navigation-attempt", "unload-attempt", "context-menu", "blocked-shortcut:copy"]

    def test_feed_when_unbound_then_drops(self, source, emitted):
        source.unbind()
        source.feed({"type": "contextmenu"})
        assert emitted == []
        assert not source.bound

    def test_accepts_when_unknown_type_or_not_dict_then_false(self, source):
        assert not source.accepts({"type": "mousemove"})
        assert not source.accepts("contextmenu")


class TestDevtoolsHeuristic:
    def test_feed_when_gap_exceeds_threshold_then_trips_once(self):
        emitted = []
        source = DevtoolsHeuristic(gap_px=200)
        source.bind(lambda kind, detail: emitted.append(kind))
        sample = {"type": "viewport", "outerWidth": 1600, "innerWidth": 1200, "outerHeight": 900, "innerHeight": 850}
        source.feed(sample)
        source.feed(sample)
        assert emitted == [SignalKind.HEURISTIC_DEVTOOLS]
        assert source.tripped

    def test_feed_when_console_trap_fires_then_trips_and_latches(self):
        emitted = []
        source = DevtoolsHeuristic()
        source.bind(lambda kind, detail: emitted.append(kind))
        source.feed({"type": "devtools-console"})
        source.feed({"type": "viewport", "outerWidth": 1600, "innerWidth": 1200, "outerHeight": 900, "innerHeight": 850})
        assert emitted == [SignalKind.HEURISTIC_DEVTOOLS]

    def test_feed_when_gap_small_then_nothing(self):
        emitted = []
        source = DevtoolsHeuristic(gap_px=200)
        source.bind(lambda kind, detail: emitted.append(kind))
        source.feed({"type": "viewport", "outerWidth": 1280, "innerWidth": 1264, "outerHeight": 800, "innerHeight": 700})
        assert emitted == []

    def test_feed_when_payload_malformed_then_ignored(self):
        emitted = []
        source = DevtoolsHeuristic()
        source.bind(lambda kind, detail: emitted.append(kind))
        assert source.feed({"type": "viewport", "outerWidth": "wide"}) is None
        assert emitted == []


def test_describe_reason_when_unknown_then_returns_code():
    assert describe_reason("blocked-shortcut:copy") == "Copy attempted"
    assert describe_reason("something-new") == "something-new"
