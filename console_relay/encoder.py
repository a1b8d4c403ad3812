"""Builds wire-ready log payloads at capture points."""

import asyncio
import functools
import logging
import os
import threading
import time
import traceback
from dataclasses import dataclass

from console_relay.config import CaptureOptions
from console_relay.models import Location
from console_relay.serializer import format_preview, serialize_values

logger = logging.getLogger(__name__)

_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
# Frames from these stdlib modules belong to the capture machinery, not the caller
_INTERNAL_DIRS = (
    _PACKAGE_DIR,
    os.path.dirname(os.path.abspath(logging.__file__)),
    os.path.dirname(os.path.abspath(asyncio.__file__)),
)
_INTERNAL_FILES = (
    os.path.abspath(threading.__file__),
    os.path.abspath(functools.__file__),
)


@dataclass(frozen=True)
class Capabilities:
    """What the instrumented runtime can do; one encoder serves every flavour."""

    supports_network_interception: bool = True
    environment_tag: str = "python"


@dataclass
class CallRecord:
    args: tuple
    kwargs: dict
    result: object = None
    error: BaseException | None = None
    duration_ms: float = 0.0


def intercept(original, observer):
    """Wrap original so observer sees every call.

    The original is always invoked first; its return value or exception is
    passed through unchanged. Observer failures are logged and swallowed.
    """

    @functools.wraps(original)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            result = original(*args, **kwargs)
        except BaseException as error:
            _notify(observer, CallRecord(args, kwargs, None, error, _elapsed_ms(start)))
            raise
        _notify(observer, CallRecord(args, kwargs, result, None, _elapsed_ms(start)))
        return result

    wrapper.__intercepted__ = original
    return wrapper


def _notify(observer, record: CallRecord):
    try:
        observer(record)
    except Exception:
        logger.debug("Capture observer failed", exc_info=True)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


def now_ms() -> int:
    return int(time.time() * 1000)


def is_internal_frame(filename: str) -> bool:
    if not filename or filename.startswith("<"):
        return True
    path = os.path.abspath(filename)
    if path in _INTERNAL_FILES:
        return True
    return any(path.startswith(d + os.sep) for d in _INTERNAL_DIRS)


def user_frames(frames) -> list[traceback.FrameSummary]:
    return [f for f in frames if not is_internal_frame(f.filename)]


def extract_location(frames) -> Location:
    """Innermost frame outside the capture machinery, or an empty Location."""
    for frame in reversed(list(frames)):
        if is_internal_frame(frame.filename):
            continue
        colno = getattr(frame, "colno", None)
        return Location(
            file=frame.filename,
            line=frame.lineno,
            column=colno + 1 if colno is not None else None,
        )
    return Location()


def format_frames(frames) -> str | None:
    if not frames:
        return None
    return "".join(traceback.format_list(frames))


class EventEncoder:
    """Turns console calls, timers, errors and network calls into log payloads."""

    def __init__(self, capabilities: Capabilities, options_getter=None):
        self._capabilities = capabilities
        self._options_getter = options_getter or CaptureOptions

    @property
    def capabilities(self) -> Capabilities:
        return self._capabilities

    def _payload(self, level: str, text: str, values: list, frames, **extra) -> dict:
        location = extract_location(frames)
        payload = {
            "type": "log",
            "kind": level,
            "level": level,
            "text": text,
            "values": values,
            "timestamp": now_ms(),
            "stack": format_frames(user_frames(frames)),
            "file": location.file,
            "line": location.line,
            "column": location.column,
            "source": self._capabilities.environment_tag,
        }
        payload.update(extra)
        return payload

    def _values(self, args) -> list:
        return serialize_values(args, self._options_getter())

    def console_event(self, method: str, args, frames=None) -> dict:
        if frames is None:
            frames = traceback.extract_stack()
        return self._payload(method, format_preview(args), self._values(args), frames)

    def timer_event(self, label: str, duration_ms: float, frames=None) -> dict:
        if frames is None:
            frames = traceback.extract_stack()
        return self._payload(
            "time",
            f"{label} {duration_ms}ms",
            [{"label": label, "durationMs": duration_ms}],
            frames,
            label=label,
            durationMs=duration_ms,
        )

    def error_event(self, error: BaseException | None, fallback_text: str, frames=None) -> dict:
        if frames is None:
            if error is not None and error.__traceback__ is not None:
                frames = traceback.extract_tb(error.__traceback__)
            if not frames or not user_frames(frames):
                frames = traceback.extract_stack()
        extra = {}
        text = fallback_text
        values = []
        if error is not None:
            values = self._values([error])
            text = values[0]["message"] or fallback_text
            if error.__traceback__ is not None:
                extra["stack"] = "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )
        return self._payload("error", text, values, frames, **extra)

    def record_event(self, level: str, record: logging.LogRecord) -> dict:
        """Payload for a stdlib logging record; the record carries its own location."""
        message = record.getMessage()
        args = [message]
        stack = None
        if record.exc_info and record.exc_info[1] is not None:
            args.append(record.exc_info[1])
            stack = "".join(traceback.format_exception(*record.exc_info))
        elif record.stack_info:
            stack = record.stack_info
        return {
            "type": "log",
            "kind": level,
            "level": level,
            "text": message,
            "values": self._values(args),
            "timestamp": int(record.created * 1000),
            "stack": stack,
            "file": record.pathname,
            "line": record.lineno,
            "column": None,
            "label": record.name,
            "source": self._capabilities.environment_tag,
        }

    def network_event(self, method: str, url: str, status, duration_ms: float,
                      error: BaseException | None = None, frames=None) -> dict:
        if frames is None:
            frames = traceback.extract_stack()
        if error is not None:
            text = f"{method} {url} ERROR {duration_ms}ms"
            status = "ERR"
            values = self._values([error])
        else:
            text = f"{method} {url} {status} {duration_ms}ms"
            values = []
        return self._payload(
            "network",
            text,
            values,
            frames,
            url=url,
            method=method,
            status=status,
            durationMs=duration_ms,
        )
