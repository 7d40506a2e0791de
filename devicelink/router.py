"""Parse inbound frames and dispatch them by ``type``."""

from __future__ import annotations

import logging
from typing import Callable

from devicelink import protocol
from devicelink.broker import Broker
from devicelink.protocol import field
from devicelink.registry import Connection

logger = logging.getLogger(__name__)

Handler = Callable[[Broker, Connection, dict], None]


def _reconnect(broker: Broker, conn: Connection, msg: dict) -> None:
    broker.reconnect(conn, field(msg, "ssid"), field(msg, "userID"))


def _heartbeat(broker: Broker, conn: Connection, msg: dict) -> None:
    broker.heartbeat(conn, field(msg, "ssid"))


def _acc_status(broker: Broker, conn: Connection, msg: dict) -> None:
    broker.register_frontend(conn, field(msg, "userID"))


def _logout(broker: Broker, conn: Connection, msg: dict) -> None:
    broker.logout(field(msg, "userID"))


def _device_selected(broker: Broker, conn: Connection, msg: dict) -> None:
    broker.pair_device(conn, field(msg, "deviceName"), field(msg, "userID"))


def _connection(broker: Broker, conn: Connection, msg: dict) -> None:
    broker.query_connection(conn, field(msg, "userID"))


def _nfc(broker: Broker, conn: Connection, msg: dict) -> None:
    broker.forward_nfc(conn, field(msg, "uid"), field(msg, "userID"))


def _pong(broker: Broker, conn: Connection, msg: dict) -> None:
    broker.mark_alive(conn)


HANDLERS: dict[str, Handler] = {
    protocol.RECONNECT: _reconnect,
    protocol.HEARTBEAT: _heartbeat,
    protocol.ACC_STATUS: _acc_status,
    protocol.LOGOUT: _logout,
    protocol.DEVICE_SELECTED: _device_selected,
    protocol.PAIR_DEVICE: _device_selected,
    protocol.CONNECTION: _connection,
    protocol.NFC: _nfc,
    protocol.PONG: _pong,
}


class MessageRouter:
    """Dispatches inbound payloads to broker handlers."""

    def __init__(self, broker: Broker, handlers: dict[str, Handler] | None = None) -> None:
        self.broker = broker
        self.handlers = dict(HANDLERS if handlers is None else handlers)

    def route(self, conn: Connection, raw: str | bytes) -> bool:
        """Handle one inbound frame. Returns False if it was dropped."""
        if conn.closed:
            logger.debug("Frame on closed connection %d, dropping", conn.conn_id)
            return False

        msg = protocol.parse(raw)
        if msg is None:
            logger.debug("Unparseable payload on connection %d, dropping", conn.conn_id)
            return False
        self.broker.mark_alive(conn)

        msg_type = msg.get("type")
        handler = self.handlers.get(msg_type) if isinstance(msg_type, str) else None
        if handler is None:
            logger.debug("Unknown message type %r on connection %d", msg_type, conn.conn_id)
            return False

        try:
            handler(self.broker, conn, msg)
        except Exception:
            logger.exception("Handler error for %s on connection %d", msg_type, conn.conn_id)
            return False
        return True
