"""Capture points: console-style calls, timers and stdlib logging records."""

import logging
import sys
import time
import traceback

from console_relay.encoder import intercept

logger = logging.getLogger(__name__)

CONSOLE_METHODS = ("log", "info", "warn", "error", "debug", "trace")
DEFAULT_TIMER = "default"


def _stream_writer(stream_name: str):
    """Print to sys.stdout/sys.stderr, looked up at call time."""

    def write(*args, sep=" ", end="\n"):
        print(*args, sep=sep, end=end, file=getattr(sys, stream_name))

    write.__name__ = stream_name
    return write


def _trace_writer(*args):
    print("Trace:", *args, file=sys.stderr)
    traceback.print_stack(sys._getframe(1), file=sys.stderr)


class Console:
    """Console-style API whose calls are printed as usual and relayed to the host.

    ``log``/``info``/``debug`` print to stdout, ``warn``/``error``/``trace`` to
    stderr. Timers work like the JavaScript console: ``time(label)`` starts,
    ``time_log(label)`` reports, ``time_end(label)`` reports and removes.
    """

    def __init__(self, context):
        self._context = context
        self._timers: dict[str, float] = {}
        writers = {
            "log": _stream_writer("stdout"),
            "info": _stream_writer("stdout"),
            "debug": _stream_writer("stdout"),
            "warn": _stream_writer("stderr"),
            "error": _stream_writer("stderr"),
            "trace": _trace_writer,
        }
        for method in CONSOLE_METHODS:
            setattr(self, method, intercept(writers[method], self._observer(method)))

    def _observer(self, method: str):
        def observe(call):
            if not self._context.config.capture_console:
                return
            frames = traceback.extract_stack()
            self._context.emit(self._context.encoder.console_event(method, call.args, frames))

        return observe

    def time(self, label: str = DEFAULT_TIMER):
        self._timers[label or DEFAULT_TIMER] = time.perf_counter()

    def time_log(self, label: str = DEFAULT_TIMER):
        self._report_timer(label or DEFAULT_TIMER, finished=False)

    def time_end(self, label: str = DEFAULT_TIMER):
        self._report_timer(label or DEFAULT_TIMER, finished=True)

    def _report_timer(self, label: str, finished: bool):
        start = self._timers.pop(label, None) if finished else self._timers.get(label)
        if start is None:
            print(f"Warning: No such label '{label}'", file=sys.stderr)
            return

        duration_ms = round((time.perf_counter() - start) * 1000, 3)
        print(f"{label}: {duration_ms}ms", file=sys.stdout)
        try:
            frames = traceback.extract_stack()
            self._context.emit(self._context.encoder.timer_event(label, duration_ms, frames))
        except Exception:
            logger.debug("Timer capture failed", exc_info=True)


def level_for_record(levelno: int) -> str:
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.WARNING:
        return "warn"
    if levelno >= logging.INFO:
        return "info"
    return "debug"


class RelayLogHandler(logging.Handler):
    """Forwards stdlib logging records to the relay host.

    Records from this package's own loggers are ignored so transport
    diagnostics never loop back into the event stream.
    """

    def __init__(self, context, level=logging.NOTSET):
        super().__init__(level)
        self._context = context

    def emit(self, record: logging.LogRecord):
        if record.name == "console_relay" or record.name.startswith("console_relay."):
            return
        if not self._context.config.capture_console:
            return
        try:
            payload = self._context.encoder.record_event(level_for_record(record.levelno), record)
            self._context.emit(payload)
        except Exception:
            self.handleError(record)
