"""Connection registry — per-connection transient bookkeeping.

Every accepted WebSocket gets a :class:`Connection` record. Directories never
hold the record itself, only its ``conn_id``; sends go through
:meth:`ConnectionRegistry.get` so a closed or evicted connection is simply
not found.

Outbound messages are queued, never awaited by the caller. The WebSocket
endpoint runs :meth:`Connection.run_writer` to drain the queue to the socket.
The queue is bounded: a peer that stops reading is closed once
``OUTBOX_LIMIT`` messages are pending.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from typing import Any, Iterator, Protocol

logger = logging.getLogger(__name__)

ROLE_UNKNOWN = "unknown"
ROLE_DEVICE = "device"
ROLE_FRONTEND = "frontend"

_CLOSE = None  # queue marker: close the transport after pending messages
OUTBOX_LIMIT = 256


class Transport(Protocol):
    """The subset of a Starlette ``WebSocket`` the broker relies on."""

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class Connection:
    """Tracks one connected peer and its outbound queue."""

    def __init__(self, conn_id: int, transport: Transport, now: float) -> None:
        self.conn_id = conn_id
        self.transport = transport
        self.alive = True
        self.role = ROLE_UNKNOWN
        self.last_activity = now
        self.device_id: str | None = None
        self.closed = False
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=OUTBOX_LIMIT)

    def __repr__(self) -> str:
        return (
            f"Connection(id={self.conn_id}, role={self.role}, "
            f"device={self.device_id!r}, closed={self.closed})"
        )

    @property
    def is_open(self) -> bool:
        return not self.closed

    def send(self, message: dict) -> bool:
        """Queue a JSON message. Returns False if the connection is closed."""
        if self.closed:
            logger.debug("Dropping %s for closed connection %d", message.get("type"), self.conn_id)
            return False
        try:
            self.outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Outbox full for connection %d, closing", self.conn_id)
            self.close()
            return False
        return True

    def close(self) -> None:
        """Mark closed and ask the writer to close the transport."""
        if self.closed:
            return
        self.closed = True
        if self.outbox.full():
            # the peer is not reading; pending messages are discarded
            while not self.outbox.empty():
                self.outbox.get_nowait()
        self.outbox.put_nowait(_CLOSE)

    async def run_writer(self) -> None:
        """Drain queued messages to the transport until closed.

        A failed send closes the connection and its transport. Either way the
        caller must reconcile the broker once this returns.
        """
        while True:
            message = await self.outbox.get()
            if message is _CLOSE:
                await self._close_transport()
                return
            try:
                await self.transport.send_json(message)
            except Exception as exc:
                logger.debug("Send failed for connection %d: %s", self.conn_id, exc)
                self.closed = True
                await self._close_transport()
                return

    async def _close_transport(self) -> None:
        try:
            await self.transport.close()
        except Exception as exc:
            logger.debug("Close failed for connection %d: %s", self.conn_id, exc)


class ConnectionRegistry:
    """Owns every live :class:`Connection`, keyed by ``conn_id``."""

    def __init__(self) -> None:
        self._connections: dict[int, Connection] = {}
        self._ids = itertools.count(1)

    def register(self, transport: Transport, now: float | None = None) -> Connection:
        conn = Connection(next(self._ids), transport, now if now is not None else time.time())
        self._connections[conn.conn_id] = conn
        return conn

    def touch(self, conn: Connection, device_id: str, now: float) -> None:
        """Record that ``conn`` belongs to ``device_id`` and was just active."""
        conn.last_activity = now
        conn.device_id = device_id

    def remove(self, conn: Connection) -> str | None:
        """Drop ``conn``; return the device id it was last bound to, if any."""
        if self._connections.pop(conn.conn_id, None) is None:
            return None
        return conn.device_id

    def get(self, conn_id: int | None) -> Connection | None:
        if conn_id is None:
            return None
        return self._connections.get(conn_id)

    def __contains__(self, conn: Connection) -> bool:
        return self._connections.get(conn.conn_id) is conn

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))

    def __len__(self) -> int:
        return len(self._connections)
