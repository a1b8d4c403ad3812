"""Asyncio TCP server that accepts runtime connections and multiplexes their events."""

import asyncio
import logging
from dataclasses import dataclass, field

from console_relay.protocol import MAX_FRAME_SIZE, config_message, decode_message, encode_message

logger = logging.getLogger(__name__)


@dataclass
class ClientSession:
    id: int
    writer: asyncio.StreamWriter
    metadata: dict = field(default_factory=dict)


class TransportServer:
    """Accepts any number of runtime connections speaking NDJSON.

    ``log`` messages are passed to ``on_log(message, session_id)``; ``hello``
    messages are merged into the session metadata; anything else, including
    unparseable lines, is dropped without a reply.
    """

    def __init__(self, host: str, port: int, on_log, config_payload=None,
                 on_sessions_changed=None):
        self._host = host
        self._port = port
        self._on_log = on_log
        self._config_payload = config_payload or dict
        self._on_sessions_changed = on_sessions_changed
        self.server: asyncio.Server | None = None
        self.sessions: dict[int, ClientSession] = {}
        self._session_seq = 0
        self._bound: tuple | None = None

    @property
    def running(self) -> bool:
        return self.server is not None

    @property
    def session_count(self) -> int:
        return len(self.sessions)

    @property
    def bound_address(self) -> tuple | None:
        """(host, port) actually bound. Useful when port=0."""
        return self._bound

    @property
    def address(self) -> str:
        if self._bound is None:
            return "stopped"
        return f"{self._bound[0]}:{self._bound[1]}"

    async def start(self) -> None:
        """Bind and start accepting connections."""
        if self.server is not None:
            return
        self.server = await asyncio.start_server(
            self._client_connected,
            self._host,
            self._port,
            limit=MAX_FRAME_SIZE,
        )
        self._bound = self.server.sockets[0].getsockname()[:2]
        logger.info("Relay server listening on %s", self.address)

    async def stop(self) -> None:
        """Stop accepting, close every session and wait for the listener to close."""
        if self.server is None:
            return
        server = self.server
        self.server = None
        self._bound = None
        server.close()
        for session in list(self.sessions.values()):
            session.writer.close()
        self.sessions.clear()
        await server.wait_closed()
        self._sessions_changed()
        logger.info("Relay server stopped")

    def broadcast_config(self, payload: dict | None = None):
        """Send the config message to every live session."""
        message = config_message(payload if payload is not None else self._config_payload())
        for session in list(self.sessions.values()):
            self._send(session, message)

    def _send(self, session: ClientSession, message: dict):
        if session.writer.is_closing():
            return
        session.writer.write(encode_message(message))

    def _sessions_changed(self):
        if self._on_sessions_changed is not None:
            self._on_sessions_changed()

    async def _client_connected(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Callback for each new client connection."""
        self._session_seq += 1
        peer = writer.get_extra_info("peername")
        session = ClientSession(
            id=self._session_seq,
            writer=writer,
            metadata={"remote": peer[0] if peer else None},
        )
        self.sessions[session.id] = session
        logger.info("Client %d connected from %s", session.id, session.metadata["remote"])
        self._sessions_changed()
        self._send(session, config_message(self._config_payload()))

        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                line = line.strip()
                if line:
                    self._handle_line(session, line)
        except (OSError, asyncio.IncompleteReadError, ValueError) as e:
            # ValueError: frame longer than MAX_FRAME_SIZE
            logger.debug("Client %d connection error: %s", session.id, e)
        finally:
            removed = self.sessions.pop(session.id, None)
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
            logger.info("Client %d disconnected", session.id)
            if removed is not None:
                self._sessions_changed()

    def _handle_line(self, session: ClientSession, line: bytes):
        message = decode_message(line)
        if message is None:
            return

        if message["type"] == "hello":
            client = message.get("client")
            if isinstance(client, dict):
                session.metadata.update(client)
                self._sessions_changed()
            return

        if message["type"] == "log":
            try:
                self._on_log(message, session.id)
            except Exception:
                # A frame the host cannot ingest is dropped; the session stays open
                logger.debug("Dropping log frame from client %d", session.id, exc_info=True)
