"""Host process wiring: server -> store -> output / inline annotations."""

import logging
from dataclasses import replace

from console_relay.annotations import InlineAnnotationState, format_fallback_text, format_timestamp
from console_relay.config import HostConfig
from console_relay.correlator import SourceCorrelator
from console_relay.log_store import LogStore
from console_relay.models import LogEvent
from console_relay.server import TransportServer

logger = logging.getLogger(__name__)
# Human-readable stream of received events (the output panel)
output_logger = logging.getLogger("console_relay.output")


class RelayHost:
    """Owns the log store, correlator, annotation state and transport server."""

    def __init__(self, config: HostConfig | None = None, workspace_roots=()):
        self.config = config or HostConfig()
        self.store = LogStore(self.config.max_log_entries)
        self.correlator = SourceCorrelator(self.config.path_mappings, workspace_roots)
        self.annotations = InlineAnnotationState(
            self.correlator,
            enabled_levels=self.config.enabled_levels,
            max_text_length=self.config.inline_max_text_length,
            show_timestamp=self.config.inline_show_timestamp,
            enabled=self.config.inline_enabled,
        )
        self.server = self._make_server()

    def _make_server(self) -> TransportServer:
        return TransportServer(
            self.config.host,
            self.config.port,
            on_log=self.handle_log,
            config_payload=self.client_payload,
        )

    def client_payload(self) -> dict:
        return self.config.client_payload()

    async def start(self):
        await self.server.start()

    async def stop(self):
        await self.server.stop()

    # -- ingestion -----------------------------------------------------------

    def handle_log(self, payload: dict, session_id: int | None = None) -> LogEvent:
        """Store one inbound log message and fan it out to output and inline state."""
        event = self.store.ingest(payload, session_id)
        if event.level in self.config.enabled_levels:
            output_logger.info(self.format_output_line(event))
            if self.annotations.enabled:
                self.annotations.record(event)
        return event

    def format_output_line(self, event: LogEvent) -> str:
        location = ""
        if event.file and event.line:
            location = f" {self.correlator.shorten(event.file)}:{event.line}"
        text = event.text or format_fallback_text(event)
        return f"[{format_timestamp(event.timestamp)}] {event.level.upper()}{location} {text}"

    # -- commands ------------------------------------------------------------

    def clear_logs(self):
        self.store.clear()
        self.annotations.clear_all()

    def toggle_inline(self) -> bool:
        self.annotations.enabled = not self.annotations.enabled
        return self.annotations.enabled

    def toggle_network(self) -> bool:
        self.config = replace(self.config, network_enabled=not self.config.network_enabled)
        self.server.broadcast_config(self.config.client_payload())
        return self.config.network_enabled

    def open_entry(self, event_id: int) -> tuple[str, int, int] | None:
        """(path, zero-based line, zero-based column) to navigate to for a stored event."""
        event = self.store.find(event_id)
        if event is None:
            return None
        path = self.correlator.resolve(event.location) if event.location else None
        if path is None:
            logger.warning("Could not resolve the source file for log entry %d", event_id)
            return None
        line = max(0, (event.line or 1) - 1)
        column = max(0, (event.column or 1) - 1)
        return path, line, column

    async def apply_config(self, new_config: HostConfig):
        """Apply a configuration change to the running host."""
        previous = self.config
        self.config = new_config

        if (previous.host, previous.port) != (new_config.host, new_config.port):
            was_running = self.server.running
            await self.server.stop()
            self.server = self._make_server()
            if was_running:
                await self.server.start()

        if previous.max_log_entries != new_config.max_log_entries:
            self.store.set_max_entries(new_config.max_log_entries)

        self.annotations.enabled = new_config.inline_enabled
        self.annotations.enabled_levels = frozenset(new_config.enabled_levels)
        self.annotations.max_text_length = new_config.inline_max_text_length
        self.annotations.show_timestamp = new_config.inline_show_timestamp
        self.correlator.update(path_mappings=new_config.path_mappings)

        if previous.client_payload() != new_config.client_payload():
            self.server.broadcast_config(new_config.client_payload())

    # -- status --------------------------------------------------------------

    def status_text(self) -> str:
        if not self.server.running:
            return "stopped"
        return f"{self.server.address} ({self.server.session_count})"

    def snapshot(self) -> dict:
        """Initial payload for a log view: all logs plus server state."""
        return {
            "logs": [event.to_dict() for event in self.store.all()],
            "enabledLevels": list(self.config.enabled_levels),
            "clientCount": self.server.session_count,
            "server": self.server.address,
        }
