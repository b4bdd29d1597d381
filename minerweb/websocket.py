"""
minerweb - Broadcast Hub
==========================
Pushes live mining telemetry to every connected browser over WebSocket.

Each connected client gets a ClientConnection with its own bounded FIFO
queue and its own drain task. Producers (the miner's worker threads, the
request handlers) call publish(), which only appends to queues and never
touches the network, so a slow or stalled browser cannot hold up the miner.
When a client's queue is full the oldest pending message is dropped:
telemetry is transient and the newest state matters most.

Locking:
    - The registry lock guards the set of connections. publish() copies the
      registry under the lock and iterates the copy, so a client that
      disconnects mid-broadcast cannot break the iteration.
    - Each connection's queue lock guards its deque.
    Neither lock is ever held across a network write.

publish() may be called from any thread. The drain task is woken through
loop.call_soon_threadsafe() on the event loop that registered it.

Message format (dict messages):
    {
        "type": "mininginfo",
        "data": { ... },
        "timestamp": "2026-02-08T12:00:00+00:00"
    }

Usage:
    # Producer side, from any thread:
    hub.publish_event("plotcheck", {"path": path, "ok": True})

    # In the WebSocket endpoint:
    connection = hub.register(websocket)
    await connection.serve()
"""

import asyncio
import json
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Protocol


logger = logging.getLogger(__name__)

CONNECTED = "connected"
CLOSING = "closing"
CLOSED = "closed"


class Transport(Protocol):
    """Anything that can deliver a text frame; FastAPI's WebSocket qualifies."""

    async def send_text(self, data: str) -> None: ...


class ClientConnection:
    """
    One push client: a bounded message queue plus its delivery state.

    Attributes:
        transport: Where messages are written.
        state:     One of "connected", "closing", "closed".
        dropped:   Number of messages discarded because the queue was full.
    """

    def __init__(
        self,
        transport: Transport,
        queue_size: int,
        loop: asyncio.AbstractEventLoop,
        on_closed: Callable[["ClientConnection"], None] | None = None,
    ):
        self.transport = transport
        self.state = CONNECTED
        self.dropped = 0
        self._queue: deque[str] = deque()
        self._queue_size = max(1, queue_size)
        self._lock = threading.Lock()
        self._loop = loop
        self._wakeup = asyncio.Event()
        self._on_closed = on_closed

    def enqueue(self, message: str) -> None:
        """Queue a message, dropping the oldest if the queue is full."""
        with self._lock:
            if self.state != CONNECTED:
                return
            if len(self._queue) >= self._queue_size:
                self._queue.popleft()
                self.dropped += 1
            self._queue.append(message)
        self._notify()

    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    def close(self) -> None:
        """Stop delivery and wake the drain task so it can exit."""
        with self._lock:
            if self.state == CONNECTED:
                self.state = CLOSING
        self._notify()

    async def serve(self) -> None:
        """
        Drain loop: deliver queued messages in order until the connection
        closes or a write fails.
        """
        try:
            while True:
                message = self._pop()
                if message is None:
                    if self.state != CONNECTED:
                        break
                    self._wakeup.clear()
                    # A publish may have landed between the pop and the clear
                    message = self._pop()
                    if message is None:
                        await self._wakeup.wait()
                        continue
                try:
                    await self.transport.send_text(message)
                except Exception as e:
                    logger.debug("Push write failed, closing client: %s", e)
                    self.close()
                    break
        finally:
            with self._lock:
                self.state = CLOSED
                self._queue.clear()
            if self._on_closed is not None:
                self._on_closed(self)

    def _pop(self) -> str | None:
        with self._lock:
            if self.state != CONNECTED or not self._queue:
                return None
            return self._queue.popleft()

    def _notify(self) -> None:
        try:
            self._loop.call_soon_threadsafe(self._wakeup.set)
        except RuntimeError:
            # Event loop already closed; nothing left to wake
            pass


class BroadcastHub:
    """
    Registry of push clients and the entry point for telemetry producers.

    Attributes:
        queue_size: Maximum pending messages per client, at least 1.
    """

    def __init__(self, queue_size: int = 64):
        self.queue_size = max(1, int(queue_size))
        self._connections: dict[int, ClientConnection] = {}
        self._lock = threading.Lock()

    def register(self, transport: Transport, initial: Iterable[str] = ()) -> ClientConnection:
        """
        Add a client. Must be called from the event loop that will run the
        connection's drain task.

        Args:
            transport: The accepted WebSocket.
            initial:   Messages queued for this client before any broadcast.

        Returns:
            The new connection; the caller runs connection.serve().
        """
        connection = ClientConnection(
            transport, self.queue_size, asyncio.get_running_loop(), on_closed=self.unregister,
        )
        for message in initial:
            connection.enqueue(message)
        with self._lock:
            self._connections[id(connection)] = connection
        logger.info("Push client connected (%d total)", self.client_count)
        return connection

    def unregister(self, connection: ClientConnection) -> None:
        """Remove a client; removing one twice is harmless."""
        with self._lock:
            removed = self._connections.pop(id(connection), None)
        if removed is not None:
            connection.close()
            logger.info("Push client disconnected (%d remaining)", self.client_count)

    def publish(self, message: str | dict[str, Any]) -> None:
        """
        Queue a message for every connected client. Never blocks on I/O.

        Dict messages are encoded as JSON with a timestamp added if missing.
        """
        if isinstance(message, dict):
            message = encode_message(message)

        with self._lock:
            snapshot = list(self._connections.values())

        for connection in snapshot:
            connection.enqueue(message)

    def publish_event(self, msg_type: str, data: dict | None = None) -> None:
        """Convenience: publish a typed telemetry event."""
        self.publish({"type": msg_type, "data": data or {}})

    @property
    def client_count(self) -> int:
        """Return the number of currently connected clients."""
        with self._lock:
            return len(self._connections)


def encode_message(message: dict[str, Any]) -> str:
    """Serialise a telemetry dict, stamping it with the current UTC time."""
    if "timestamp" not in message:
        message = {**message, "timestamp": datetime.now(timezone.utc).isoformat()}
    return json.dumps(message, ensure_ascii=False)
