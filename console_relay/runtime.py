"""Per-process capture context owned by the instrumented program."""

import asyncio
import logging
import os
import platform
import socket
import sys
import threading

from console_relay.capture import Console, RelayLogHandler
from console_relay.client import TransportClient
from console_relay.config import ClientConfig, load_client_config, merge_client_config
from console_relay.encoder import Capabilities, EventEncoder, intercept

logger = logging.getLogger(__name__)


def _describe_request(fn, args, kwargs) -> tuple[str, str]:
    """Best-effort (method, url) for urlopen- and requests-style callables."""
    target = args[0] if args else kwargs.get("url", "")
    method = kwargs.get("method")
    if hasattr(target, "get_method"):
        method = method or target.get_method()
        url = getattr(target, "full_url", "")
    else:
        url = str(target)
    if not method:
        name = getattr(fn, "__name__", "").lower()
        if name in ("get", "post", "put", "patch", "delete", "head", "options"):
            method = name
        elif kwargs.get("data") is not None or len(args) > 1:
            method = "POST"
        else:
            method = "GET"
    return str(method).upper(), url


def _response_status(response):
    for attr in ("status", "status_code", "code"):
        value = getattr(response, attr, None)
        if value is not None:
            return value
    return None


class RuntimeContext:
    """Owns the config, encoder, capture hooks and transport of one process.

    Usage, from inside a running event loop::

        ctx = RuntimeContext()
        ctx.start()
        ctx.console.log("hello", {"a": 1})
        urlopen = ctx.instrument_request(urllib.request.urlopen)
    """

    def __init__(self, config: ClientConfig | None = None,
                 capabilities: Capabilities | None = None):
        self.config = config if config is not None else load_client_config()
        self.capabilities = capabilities or Capabilities()
        self.encoder = EventEncoder(self.capabilities, lambda: self.config.capture_options)
        self.client = TransportClient(
            self.config.host,
            self.config.port,
            metadata=self._metadata(),
            on_config=self.apply_remote_config,
        )
        self.console = Console(self)
        self.log_handler = RelayLogHandler(self)
        self._installed = False
        self._previous_excepthook = None
        self._previous_thread_excepthook = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._previous_loop_handler = None

    @property
    def installed(self) -> bool:
        return self._installed

    def _metadata(self) -> dict:
        return {
            "runtime": self.capabilities.environment_tag,
            "pid": os.getpid(),
            "python": platform.python_version(),
            "hostname": socket.gethostname(),
        }

    def start(self, **overrides):
        """Merge overrides, install hooks (once) and connect. Needs a running loop."""
        if overrides:
            self.config = merge_client_config(self.config, overrides)
            self.client.set_address(self.config.host, self.config.port)
        self.install()
        self.client.connect()

    def stop(self):
        self.client.stop()

    def emit(self, payload: dict):
        self.client.send(payload)

    def apply_remote_config(self, data: dict):
        try:
            self.config = merge_client_config(self.config, data)
        except (TypeError, ValueError) as e:
            logger.debug("Ignoring invalid config from host: %s", e)

    # -- hooks ---------------------------------------------------------------

    def install(self):
        """Install the error hooks and logging bridge. Repeated calls do nothing."""
        if self._installed:
            return
        self._installed = True

        self._previous_excepthook = sys.excepthook
        sys.excepthook = intercept(sys.excepthook, self._on_uncaught)

        self._previous_thread_excepthook = threading.excepthook
        threading.excepthook = intercept(threading.excepthook, self._on_thread_exception)

        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None
        if self._loop is not None:
            self._previous_loop_handler = self._loop.get_exception_handler()
            previous = self._previous_loop_handler
            if previous is None:
                def previous(loop, context):
                    loop.default_exception_handler(context)
            self._loop.set_exception_handler(intercept(previous, self._on_loop_exception))

        logging.getLogger().addHandler(self.log_handler)

    def uninstall(self):
        if not self._installed:
            return
        self._installed = False
        sys.excepthook = self._previous_excepthook
        threading.excepthook = self._previous_thread_excepthook
        if self._loop is not None and not self._loop.is_closed():
            self._loop.set_exception_handler(self._previous_loop_handler)
        self._loop = None
        self._previous_loop_handler = None
        logging.getLogger().removeHandler(self.log_handler)

    def capture_exception(self, error: BaseException | None, fallback_text: str = "Uncaught exception"):
        if not self.config.capture_errors:
            return
        self.emit(self.encoder.error_event(error, fallback_text))

    def _on_uncaught(self, call):
        self.capture_exception(call.args[1], "Uncaught exception")

    def _on_thread_exception(self, call):
        self.capture_exception(call.args[0].exc_value, "Uncaught exception")

    def _on_loop_exception(self, call):
        context = call.args[1]
        error = context.get("exception")
        self.capture_exception(error, context.get("message") or "Unhandled rejection")

    # -- network -------------------------------------------------------------

    def instrument_request(self, fn):
        """Wrap a request callable (e.g. urllib.request.urlopen) to report network events."""

        def observe(call):
            if not (self.capabilities.supports_network_interception
                    and self.config.network_enabled):
                return
            method, url = _describe_request(fn, call.args, call.kwargs)
            self.emit(self.encoder.network_event(
                method,
                url,
                _response_status(call.result),
                call.duration_ms,
                error=call.error,
            ))

        return intercept(fn, observe)
