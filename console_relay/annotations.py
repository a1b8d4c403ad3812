"""Per-file, per-line aggregation of the latest event, and inline display formatting."""

import json
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone

from console_relay.correlator import SourceCorrelator
from console_relay.models import LEVELS, LogEvent

_MARKDOWN_SPECIAL = re.compile(r"([\\`*_{}\[\]()#+\-.!|>])")


@dataclass
class LineState:
    event: LogEvent
    count: int = 1


@dataclass(frozen=True)
class InlineDirective:
    line: int                # zero-based
    level: str
    text: str
    occurrence_suffix: str   # " (+N)" or ""
    hover_detail: str        # markdown

    @property
    def content(self) -> str:
        return f" {self.text}{self.occurrence_suffix}"


def format_timestamp(timestamp_ms: int) -> str:
    """HH:MM:SS.mmm in UTC."""
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt.strftime("%H:%M:%S.") + f"{dt.microsecond // 1000:03d}"


def _number(value) -> str:
    if value is None or value == "":
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def stringify_value(value) -> str:
    if value is None:
        return "null"
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def format_fallback_text(event: LogEvent) -> str:
    """Display text for events that arrive without a text preview."""
    if event.kind == "network":
        return (
            f"{event.method or 'GET'} {event.url or ''} {_number(event.status)} "
            f"{_number(event.duration_ms)}ms"
        ).strip()
    if event.kind == "time":
        return f"{event.label or 'timer'} {_number(event.duration_ms)}ms".strip()
    if event.values:
        return " ".join(stringify_value(value) for value in event.values)
    return event.text or ""


def escape_markdown(text: str | None) -> str:
    if not text:
        return ""
    return _MARKDOWN_SPECIAL.sub(r"\\\1", text)


def format_inline_text(event: LogEvent, count: int, max_length: int = 120,
                       show_timestamp: bool = False) -> tuple[str, str]:
    """Return (text, occurrence suffix) for one annotated line."""
    prefix = f"[{format_timestamp(event.timestamp)}] " if show_timestamp else ""
    text = event.text or format_fallback_text(event)
    if len(text) > max_length:
        text = text[:max(0, max_length - 3)] + "..."
    suffix = f" (+{count - 1})" if count > 1 else ""
    return prefix + text, suffix


def build_hover(event: LogEvent, shorten=None) -> str:
    """Markdown hover with level, time, location, message and kind details."""
    shorten = shorten or (lambda path: path)
    parts = [
        f"**{event.level.upper()}**",
        f"Time: {format_timestamp(event.timestamp)}",
    ]
    if event.file and event.line:
        parts.append(f"Location: {escape_markdown(shorten(event.file))}:{event.line}")
    if event.text:
        parts.append(f"Message: {escape_markdown(event.text)}")
    if event.kind == "network":
        network = (
            f"{event.method or 'GET'} {event.url or ''} {_number(event.status)} "
            f"{_number(event.duration_ms)}ms"
        )
        parts.append(f"Network: {escape_markdown(network.strip())}")
    if event.kind == "time":
        timer = f"{event.label or ''} {_number(event.duration_ms)}ms"
        parts.append(f"Timer: {escape_markdown(timer.strip())}")
    if event.stack:
        parts.append("Stack:  \n```\n" + escape_markdown(event.stack) + "\n```")
    return "  \n".join(parts)


class InlineAnnotationState:
    """Latest event and occurrence count for every (file, line) that has logged.

    State is only dropped by ``clear_all``. Trimming the log store does not
    remove annotations whose events are no longer stored.
    """

    def __init__(self, correlator: SourceCorrelator, enabled_levels=LEVELS,
                 max_text_length: int = 120, show_timestamp: bool = False,
                 enabled: bool = True):
        self._correlator = correlator
        self._lines: dict[str, dict[int, LineState]] = {}
        self.enabled_levels = frozenset(enabled_levels)
        self.max_text_length = max_text_length
        self.show_timestamp = show_timestamp
        self.enabled = enabled

    def record(self, event: LogEvent) -> tuple[str, int] | None:
        """Attach event to its resolved (file, zero-based line). None if unresolved."""
        path = self._correlator.resolve(event.location) if event.location else None
        if path is None:
            return None

        try:
            line = max(0, int(event.line or 1) - 1)
        except (TypeError, ValueError):
            line = 0

        lines = self._lines.setdefault(path, {})
        existing = lines.get(line)
        count = existing.count + 1 if existing else 1
        lines[line] = LineState(event, count)
        return path, line

    def line_state(self, file: str, line: int) -> LineState | None:
        return self._lines.get(os.path.normpath(file), {}).get(line)

    def files(self) -> list[str]:
        return list(self._lines)

    def render(self, file: str, line_count: int | None = None) -> list[InlineDirective]:
        """Directives for every annotated line of file whose level is enabled."""
        if not self.enabled:
            return []
        lines = self._lines.get(os.path.normpath(file))
        if not lines:
            return []

        directives = []
        for line, state in sorted(lines.items()):
            if state.event.level not in self.enabled_levels:
                continue
            if line_count is not None and line >= line_count:
                continue
            text, suffix = format_inline_text(
                state.event, state.count, self.max_text_length, self.show_timestamp,
            )
            directives.append(InlineDirective(
                line=line,
                level=state.event.level,
                text=text,
                occurrence_suffix=suffix,
                hover_detail=build_hover(state.event, self._correlator.shorten),
            ))
        return directives

    def clear_all(self):
        self._lines.clear()
