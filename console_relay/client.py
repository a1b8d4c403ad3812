"""Runtime-side transport: persistent connection, outbound queue, reconnect."""

import asyncio
import collections
import enum
import logging

from console_relay.protocol import MAX_FRAME_SIZE, decode_message, encode_message, hello_message

logger = logging.getLogger(__name__)

RECONNECT_DELAY = 1.5


class ClientState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"


class TransportClient:
    """Streams payloads to the relay host over one NDJSON connection.

    While the connection is not open, payloads are queued in memory (FIFO,
    unbounded) and flushed in order once it opens, followed by a single
    ``hello``. A dropped connection schedules exactly one reconnect attempt.
    """

    def __init__(self, host: str, port: int, metadata: dict | None = None,
                 on_config=None, reconnect_delay: float = RECONNECT_DELAY):
        self._host = host
        self._port = port
        self._metadata = dict(metadata or {})
        self._on_config = on_config
        self._reconnect_delay = reconnect_delay
        self._queue: collections.deque = collections.deque()
        self._state = ClientState.DISCONNECTED
        self._loop: asyncio.AbstractEventLoop | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._task: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._stopped = False
        self.connect_attempts = 0

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ClientState.OPEN

    @property
    def pending(self) -> int:
        """Number of payloads waiting for a connection."""
        return len(self._queue)

    def set_address(self, host: str, port: int):
        self._host = host
        self._port = port

    def connect(self):
        """Open a connection on the running loop unless one exists or is opening."""
        if self._writer is not None or self._state is not ClientState.DISCONNECTED:
            return
        self._stopped = False
        self._loop = asyncio.get_running_loop()
        self._state = ClientState.CONNECTING
        self.connect_attempts += 1
        self._task = self._loop.create_task(self._run())

    def stop(self):
        """Close the active connection. Queued payloads are kept, not flushed."""
        self._stopped = True
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        if self._writer is not None:
            self._writer.close()
            self._writer = None
        self._state = ClientState.DISCONNECTED

    def send(self, payload: dict):
        """Write payload now if open, otherwise queue it. Never raises."""
        if self._loop is not None and not self._on_loop_thread():
            try:
                self._loop.call_soon_threadsafe(self.send, payload)
                return
            except RuntimeError:
                # Loop already closed
                pass

        if self._state is ClientState.OPEN and self._writer is not None \
                and not self._writer.is_closing():
            self._write(payload)
        else:
            self._queue.append(payload)

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _write(self, payload: dict):
        try:
            data = encode_message(payload)
        except (TypeError, ValueError) as e:
            logger.debug("Dropping unencodable payload: %s", e)
            return
        self._writer.write(data)

    def _flush_queue(self):
        while self._queue and self._writer is not None and not self._writer.is_closing():
            self._write(self._queue.popleft())

    async def _run(self):
        task = asyncio.current_task()
        try:
            reader, writer = await asyncio.open_connection(
                self._host, self._port, limit=MAX_FRAME_SIZE,
            )
        except OSError as e:
            logger.debug("Failed to connect to %s:%d: %s", self._host, self._port, e)
            if self._task is task:
                self._on_closed()
            return

        self._writer = writer
        self._state = ClientState.OPEN
        logger.info("Connected to relay at %s:%d", self._host, self._port)
        self._flush_queue()
        self._write(hello_message(self._metadata))

        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                self._handle_line(line)
        except (OSError, asyncio.IncompleteReadError, ValueError) as e:
            logger.debug("Connection error: %s", e)
        finally:
            if self._writer is writer:
                writer.close()
                self._writer = None
            if self._task is task:
                self._on_closed()

    def _handle_line(self, line: bytes):
        message = decode_message(line)
        if message is None or message["type"] != "config":
            return
        config = message.get("config")
        if isinstance(config, dict) and self._on_config is not None:
            self._on_config(config)

    def _on_closed(self):
        if self._stopped:
            return
        if self._state is ClientState.OPEN:
            logger.info("Disconnected from relay at %s:%d", self._host, self._port)
        self._state = ClientState.DISCONNECTED
        self._schedule_reconnect()

    def _schedule_reconnect(self):
        if self._reconnect_handle is not None or self._loop is None:
            return
        self._reconnect_handle = self._loop.call_later(self._reconnect_delay, self._reconnect)

    def _reconnect(self):
        self._reconnect_handle = None
        if self._stopped or self._writer is not None:
            return
        self.connect()
