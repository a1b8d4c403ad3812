"""Tests for inline annotation state and its display formatting."""

import pytest

from console_relay.annotations import (
    InlineAnnotationState,
    build_hover,
    escape_markdown,
    format_fallback_text,
    format_inline_text,
    format_timestamp,
)
from console_relay.correlator import SourceCorrelator
from console_relay.log_store import LogStore
from console_relay.models import LogEvent

TS = 1705314600123  # 2024-01-15 10:30:00.123 UTC


def _event(event_id=1, level="log", text="hello", file="app.py", line=5, **extra):
    return LogEvent(
        id=event_id, level=level, kind=extra.pop("kind", level), text=text,
        timestamp=TS, file=file, line=line, **extra,
    )


@pytest.fixture
def workspace(tmp_path):
    (tmp_path / "app.py").write_text("\n" * 20)
    return tmp_path


@pytest.fixture
def state(workspace):
    return InlineAnnotationState(SourceCorrelator(workspace_roots=[str(workspace)]))


class TestRecord:
    def test_unresolved_event_ignored(self, state):
        assert state.record(_event(file="missing.py")) is None
        assert state.record(_event(file=None)) is None
        assert state.files() == []

    def test_line_is_zero_based(self, state, workspace):
        path, line = state.record(_event(line=5))
        assert path == str(workspace / "app.py")
        assert line == 4

    def test_missing_line_maps_to_first(self, state, workspace):
        _, line = state.record(_event(line=None))
        assert line == 0

    def test_latest_event_and_count(self, state, workspace):
        state.record(_event(1, text="first"))
        state.record(_event(2, text="second"))
        line_state = state.line_state(str(workspace / "app.py"), 4)
        assert line_state.count == 2
        assert line_state.event.text == "second"

        directives = state.render(str(workspace / "app.py"))
        assert len(directives) == 1
        assert directives[0].text == "second"
        assert directives[0].occurrence_suffix == " (+1)"
        assert directives[0].content == " second (+1)"

    def test_lines_tracked_separately(self, state, workspace):
        state.record(_event(1, line=3))
        state.record(_event(2, line=1))
        directives = state.render(str(workspace / "app.py"))
        assert [d.line for d in directives] == [0, 2]
        assert all(d.occurrence_suffix == "" for d in directives)


class TestRender:
    def test_disabled_levels_omitted(self, state, workspace):
        state.record(_event(1, level="debug", line=1))
        state.record(_event(2, level="error", line=2))
        state.enabled_levels = frozenset({"error"})
        directives = state.render(str(workspace / "app.py"))
        assert [d.level for d in directives] == ["error"]

    def test_disabled_renders_nothing(self, state, workspace):
        state.record(_event())
        state.enabled = False
        assert state.render(str(workspace / "app.py")) == []

    def test_lines_beyond_document_skipped(self, state, workspace):
        state.record(_event(line=15))
        assert state.render(str(workspace / "app.py"), line_count=10) == []

    def test_unknown_file(self, state):
        assert state.render("/nowhere.py") == []

    def test_clear_all(self, state, workspace):
        state.record(_event())
        state.clear_all()
        assert state.render(str(workspace / "app.py")) == []
        assert state.files() == []

    def test_annotation_survives_store_trim(self, state, workspace):
        store = LogStore(max_entries=1)
        first = store.ingest({"level": "log", "text": "old", "file": "app.py", "line": 2})
        state.record(first)
        store.ingest({"level": "log", "text": "new", "file": "other.py", "line": 1})
        assert store.find(first.id) is None
        directives = state.render(str(workspace / "app.py"))
        assert directives[0].text == "old"

    def test_hover_included(self, state, workspace):
        state.record(_event(text="boom", level="error"))
        hover = state.render(str(workspace / "app.py"))[0].hover_detail
        assert hover.startswith("**ERROR**")
        assert "Location: app\\.py:5" in hover


class TestFormatting:
    def test_timestamp(self):
        assert format_timestamp(TS) == "10:30:00.123"

    def test_truncation(self):
        text, suffix = format_inline_text(_event(text="x" * 200), 1, max_length=10)
        assert text == "xxxxxxx..."
        assert len(text) == 10
        assert suffix == ""

    def test_show_timestamp(self):
        text, _ = format_inline_text(_event(text="hi"), 1, show_timestamp=True)
        assert text == "[10:30:00.123] hi"

    def test_suffix_counts_extra_occurrences(self):
        _, suffix = format_inline_text(_event(), 4)
        assert suffix == " (+3)"

    def test_fallback_for_network(self):
        event = _event(level="network", text="", method="POST", url="http://x/api",
                       status=500, duration_ms=12.0)
        assert format_fallback_text(event) == "POST http://x/api 500 12ms"
        assert format_inline_text(event, 1)[0] == "POST http://x/api 500 12ms"

    def test_fallback_for_timer(self):
        event = _event(level="time", text="", label="load", duration_ms=3.5)
        assert format_fallback_text(event) == "load 3.5ms"

    def test_fallback_from_values(self):
        event = _event(text="", values=("count", {"n": 2}, None))
        assert format_fallback_text(event) == 'count {"n": 2} null'

    def test_escape_markdown(self):
        assert escape_markdown("a_b*c") == "a\\_b\\*c"
        assert escape_markdown(None) == ""

    def test_hover_sections(self):
        event = _event(level="network", text="GET /x", method="GET", url="/x",
                       status=200, duration_ms=5.0, stack="at main")
        hover = build_hover(event)
        parts = hover.split("  \n")
        assert parts[0] == "**NETWORK**"
        assert parts[1] == "Time: 10:30:00.123"
        assert "Network: GET /x 200 5ms" in hover
        assert "Stack:" in hover

    def test_hover_uses_shortened_path(self):
        hover = build_hover(_event(file="/work/src/app.py"), lambda p: "src/app.py")
        assert "Location: src/app\\.py:5" in hover
