"""Bounded, ordered in-memory store of received log events."""

import logging
import math

from console_relay.encoder import now_ms
from console_relay.models import LEVELS, LogEvent, sanitize_level

logger = logging.getLogger(__name__)

_SEARCH_FIELDS = ("text", "file", "stack", "url", "method", "label")
# 9999-12-31T23:59:59.999Z, the last instant datetime can represent
_MAX_TIMESTAMP_MS = 253402300799999


def _optional_str(payload: dict, key: str) -> str | None:
    # Falsy wire values ("", None) and non-strings count as absent
    value = payload.get(key)
    return value if isinstance(value, str) and value else None


def _optional_number(payload: dict, key: str):
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or not value:
        return None
    return value


def _optional_status(payload: dict):
    value = payload.get("status")
    if isinstance(value, str):
        return value or None
    return _optional_number(payload, "status")


def _optional_int(payload: dict, key: str) -> int | None:
    value = payload.get(key)
    if isinstance(value, bool):
        return None
    try:
        return int(value) or None
    except (TypeError, ValueError, OverflowError):
        return None


def _valid_timestamp(value) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or not 0 <= value <= _MAX_TIMESTAMP_MS:
        return None
    return int(value)


class LogStore:
    """Ring buffer of LogEvents with ids that only ever increase.

    Trimming drops the oldest entries; clearing empties the store but keeps
    the id counter, so an id is never handed out twice.
    """

    def __init__(self, max_entries: int = 2000):
        self._logs: list[LogEvent] = []
        self._max_entries = max_entries
        self._next_id = 0
        self._total_ingested = 0
        self._listeners = []

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def total_ingested(self) -> int:
        """Number of events ever ingested, including trimmed and cleared ones."""
        return self._total_ingested

    def __len__(self) -> int:
        return len(self._logs)

    def ingest(self, payload: dict, client_id: int | None = None) -> LogEvent:
        """Validate payload, assign the next id, append, and trim.

        Fields of the wrong type are dropped rather than rejected, and a
        timestamp that is missing or outside the displayable range is replaced
        by the ingestion time.
        """
        level = sanitize_level(payload.get("level") or payload.get("kind") or "log")
        timestamp = _valid_timestamp(payload.get("timestamp"))
        if timestamp is None:
            timestamp = now_ms()
        values = payload.get("values")
        text = payload.get("text")

        self._next_id += 1
        event = LogEvent(
            id=self._next_id,
            level=level,
            kind=_optional_str(payload, "kind") or level,
            text=text if isinstance(text, str) else "",
            values=tuple(values) if isinstance(values, list) else (),
            timestamp=timestamp,
            file=_optional_str(payload, "file"),
            line=_optional_int(payload, "line"),
            column=_optional_int(payload, "column"),
            stack=_optional_str(payload, "stack"),
            url=_optional_str(payload, "url"),
            method=_optional_str(payload, "method"),
            status=_optional_status(payload),
            duration_ms=_optional_number(payload, "durationMs"),
            label=_optional_str(payload, "label"),
            source=_optional_str(payload, "source"),
            client_id=client_id,
        )

        self._logs.append(event)
        self._total_ingested += 1
        self._trim()

        for listener in list(self._listeners):
            listener(event)
        return event

    def _trim(self):
        overflow = len(self._logs) - self._max_entries
        if overflow > 0:
            del self._logs[:overflow]
            logger.debug("Trimmed %d oldest log entries", overflow)

    def set_max_entries(self, max_entries: int):
        self._max_entries = max_entries
        self._trim()

    def clear(self):
        """Drop all entries. The id counter is not reset."""
        self._logs.clear()

    def find(self, event_id: int) -> LogEvent | None:
        """Look up an event by id; None if it was trimmed, cleared or never existed."""
        if not self._logs:
            return None
        # Retained ids are consecutive: removal only happens at the front or all at once
        index = event_id - self._logs[0].id
        if 0 <= index < len(self._logs) and self._logs[index].id == event_id:
            return self._logs[index]
        for event in self._logs:
            if event.id == event_id:
                return event
        return None

    def all(self) -> list[LogEvent]:
        """All retained events, oldest first."""
        return list(self._logs)

    def search(self, text: str = "", levels=None) -> list[LogEvent]:
        """Events whose level is in levels and whose searchable fields contain text."""
        wanted = set(LEVELS if levels is None else levels)
        needle = text.strip().lower()
        results = []
        for event in self._logs:
            if event.level not in wanted:
                continue
            if needle:
                haystack = " ".join(
                    str(getattr(event, name) or "") for name in _SEARCH_FIELDS
                ).lower()
                if needle not in haystack:
                    continue
            results.append(event)
        return results

    def subscribe(self, listener):
        """Call listener(event) for each newly stored event. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
