"""LogEvent model and level handling."""

from dataclasses import dataclass, field

LEVELS = ("log", "info", "warn", "error", "debug", "trace", "time", "network")


def sanitize_level(level) -> str:
    """Return level if it is a known level, otherwise 'log'."""
    if level in LEVELS:
        return level
    return "log"


@dataclass(frozen=True)
class Location:
    file: str | None = None
    line: int | None = None
    column: int | None = None


@dataclass(frozen=True)
class LogEvent:
    id: int
    level: str
    kind: str
    text: str = ""
    values: tuple = field(default_factory=tuple)
    timestamp: int = 0          # ms since epoch
    file: str | None = None     # raw, unresolved location
    line: int | None = None
    column: int | None = None
    stack: str | None = None
    url: str | None = None
    method: str | None = None
    status: int | str | None = None
    duration_ms: float | None = None
    label: str | None = None
    source: str | None = None
    client_id: int | None = None

    @property
    def location(self) -> Location | None:
        if not self.file:
            return None
        return Location(self.file, self.line, self.column)

    def to_dict(self) -> dict:
        """Wire/panel representation (camelCase keys)."""
        return {
            "id": self.id,
            "level": self.level,
            "kind": self.kind,
            "text": self.text,
            "values": list(self.values),
            "timestamp": self.timestamp,
            "file": self.file,
            "line": self.line,
            "column": self.column,
            "stack": self.stack,
            "url": self.url,
            "method": self.method,
            "status": self.status,
            "durationMs": self.duration_ms,
            "label": self.label,
            "source": self.source,
            "clientId": self.client_id,
        }
