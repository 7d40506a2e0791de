"""Relay broker — the single authority over connections and sessions.

Owns the :class:`ConnectionRegistry`, the :class:`DeviceDirectory` and the
:class:`FrontendDirectory`. The broker is only touched from the event loop
and no method awaits, so message handlers, liveness sweeps and close
reconciliation never interleave and need no lock. Outbound messages are
queued on the target connection (see :mod:`devicelink.registry`) and
delivered best-effort.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from devicelink import protocol
from devicelink.directory import (
    ONLINE,
    OFFLINE,
    DeviceDirectory,
    DeviceSession,
    FrontendDirectory,
)
from devicelink.registry import (
    ROLE_DEVICE,
    ROLE_FRONTEND,
    Connection,
    ConnectionRegistry,
    Transport,
)

logger = logging.getLogger(__name__)


class Broker:
    """Routes messages between devices and frontends and tracks liveness."""

    def __init__(
        self,
        device_timeout: float = 15.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.device_timeout = device_timeout
        self.clock = clock
        self.registry = ConnectionRegistry()
        self.devices = DeviceDirectory()
        self.frontends = FrontendDirectory()

    # ── Connection lifecycle ───────────────────────────────────────

    def connect(self, transport: Transport) -> Connection:
        conn = self.registry.register(transport, self.clock())
        logger.info("Client connected (connection %d)", conn.conn_id)
        return conn

    def disconnect(self, conn: Connection) -> None:
        """Reconcile the registry and directories after ``conn`` closed.

        Safe to call more than once for the same connection.
        """
        registered = conn in self.registry
        self._drop(conn)
        if registered:
            logger.info("Client disconnected (connection %d)", conn.conn_id)

    def _drop(self, conn: Connection) -> None:
        conn.close()
        device_id = self.registry.remove(conn)
        if device_id and self.devices.release(device_id, conn.conn_id):
            logger.info("Device %s offline (connection %d closed)", device_id, conn.conn_id)
        session = self.frontends.find_by_connection(conn.conn_id)
        if session is not None:
            self.frontends.mark_offline(session.user_id, self.clock())
            logger.info("Frontend %s offline (connection %d closed)", session.user_id, conn.conn_id)

    # ── Sending ────────────────────────────────────────────────────

    def send_to(self, conn_id: int | None, message: dict) -> bool:
        """Queue ``message`` for the connection with ``conn_id`` if it is open."""
        conn = self.registry.get(conn_id)
        if conn is None or not conn.is_open:
            logger.debug("No open connection %s for %s", conn_id, message.get("type"))
            return False
        return conn.send(message)

    def broadcast(self, message: dict, exclude: Connection | None = None) -> int:
        """Queue ``message`` on every open connection except ``exclude``."""
        delivered = 0
        for conn in self.registry:
            if conn is exclude or not conn.is_open:
                continue
            if conn.send(message):
                delivered += 1
        return delivered

    # ── Device handlers ────────────────────────────────────────────

    def reconnect(self, conn: Connection, device_id: str, claimed_owner: str = "") -> None:
        if not device_id:
            logger.debug("reconnect without ssid on connection %d, ignoring", conn.conn_id)
            return
        session, created = self.devices.upsert(device_id, claimed_owner)
        if created:
            logger.info("New device connected: %s", device_id)
        else:
            logger.info("Device reconnected: %s", device_id)
            if not session.owner_user_id and claimed_owner:
                session.owner_user_id = claimed_owner
        self._bind_device(conn, session)
        conn.send(protocol.say_hello(device_id, session.owner_user_id))

    def heartbeat(self, conn: Connection, device_id: str) -> None:
        if not device_id:
            logger.debug("heartbeat without ssid on connection %d, ignoring", conn.conn_id)
            return
        session, _ = self.devices.upsert(device_id)
        self._bind_device(conn, session)
        logger.debug("Heartbeat from %s", device_id)
        self.broadcast(
            protocol.device_status(device_id, ONLINE, "Device heartbeat received"),
            exclude=conn,
        )

    def _bind_device(self, conn: Connection, session: DeviceSession) -> None:
        """Bind ``conn`` to ``session``, evicting any older connection for it."""
        now = self.clock()
        device_id = session.device_id
        for other in self.registry:
            if other is not conn and other.device_id == device_id:
                logger.warning(
                    "Evicting duplicate connection %d for device %s", other.conn_id, device_id
                )
                other.close()
                self.registry.remove(other)
        if conn.device_id and conn.device_id != device_id:
            self.devices.release(conn.device_id, conn.conn_id)
        conn.role = ROLE_DEVICE
        self.registry.touch(conn, device_id, now)
        self.devices.bind(session, conn.conn_id, now)

    def forward_nfc(self, conn: Connection, uid: str, user_id: str) -> bool:
        """Forward a tag scan to the frontend of ``user_id``."""
        session = self.frontends.get(user_id) if user_id else None
        if session is None:
            logger.debug("NFC %s for unknown user %r, dropping", uid, user_id)
            return False
        sent = self.send_to(session.conn_id, protocol.nfc_event(uid))
        if not sent:
            logger.debug("Frontend %s not connected, NFC %s dropped", user_id, uid)
        return sent

    # ── Frontend handlers ──────────────────────────────────────────

    def register_frontend(self, conn: Connection, user_id: str) -> None:
        if not user_id:
            logger.debug("accStatus without userID on connection %d, ignoring", conn.conn_id)
            return
        previous = self.frontends.find_by_connection(conn.conn_id)
        if previous is not None and previous.user_id != user_id:
            self.frontends.logout(previous.user_id)
        conn.role = ROLE_FRONTEND
        conn.alive = True
        self.frontends.register(user_id, conn.conn_id, self.clock())
        logger.info("Frontend online: %s (connection %d)", user_id, conn.conn_id)

    def logout(self, user_id: str) -> None:
        if not user_id:
            return
        if self.frontends.logout(user_id):
            logger.info("Frontend logged out: %s", user_id)

    def mark_alive(self, conn: Connection) -> None:
        """Any inbound frame counts as an answer to the last ping."""
        conn.alive = True

    def pair_device(self, conn: Connection, device_id: str, user_id: str) -> bool:
        """Make ``user_id`` the owner of ``device_id`` unless another online user owns it."""
        if not device_id or not user_id:
            logger.debug("Pairing request missing deviceName or userID, ignoring")
            return False
        session = self.devices.get(device_id)
        if session is None:
            logger.info("User %s asked for unknown device %s", user_id, device_id)
            self._reply_to_user(
                conn, user_id, protocol.device_unavailable(device_id, "Device not found")
            )
            return False

        owner = session.owner_user_id
        if owner and owner != user_id and self.frontends.is_online(owner):
            logger.warning(
                "Device %s already linked to online user %s, refusing %s",
                device_id, owner, user_id,
            )
            self._reply_to_user(
                conn, user_id,
                protocol.device_unavailable(device_id, "Device is in use by another user"),
            )
            return False

        session.owner_user_id = user_id
        logger.info("Device %s linked to user %s", device_id, user_id)

        message = protocol.device_linked(device_id, user_id)
        if not self.send_to(session.conn_id, message):
            logger.info("Device %s not connected, link confirmation not delivered", device_id)
        if not self._reply_to_user(conn, user_id, message):
            logger.info("Frontend %s not connected, link confirmation not delivered", user_id)
        return True

    def query_connection(self, conn: Connection, user_id: str) -> None:
        if not user_id:
            logger.debug("connection query without userID on connection %d, ignoring", conn.conn_id)
            return
        session = self.devices.owned_by(user_id)
        if session is None:
            reply = protocol.device_connection("", False)
        else:
            reply = protocol.device_connection(session.device_id, session.status == ONLINE)
        self._reply_to_user(conn, user_id, reply)

    def _reply_to_user(self, conn: Connection, user_id: str, message: dict) -> bool:
        """Send to the user's frontend connection, falling back to ``conn``."""
        session = self.frontends.get(user_id) if user_id else None
        if session is not None and session.conn_id is not None:
            return self.send_to(session.conn_id, message)
        return conn.send(message)

    # ── Liveness sweeps ────────────────────────────────────────────

    def sweep_devices(self, now: float | None = None) -> list[str]:
        """Close device connections idle longer than the timeout.

        Returns the device ids that went offline.
        """
        timed_out: list[str] = []
        now = self.clock() if now is None else now
        for conn in self.registry:
            if not conn.device_id or now - conn.last_activity <= self.device_timeout:
                continue
            device_id = conn.device_id
            logger.warning("Device %s not responding, marking offline", device_id)
            self.broadcast(protocol.device_status(device_id, OFFLINE, "Device not responding"))
            self._drop(conn)
            timed_out.append(device_id)
        return timed_out

    def sweep_frontends(self) -> list[str]:
        """Ping frontend connections; drop those that missed the last ping.

        Returns the user ids that went offline.
        """
        dropped: list[str] = []
        for conn in self.registry:
            if conn.role != ROLE_FRONTEND:
                continue
            if conn.alive:
                conn.alive = False
                conn.send(protocol.ping())
                continue
            session = self.frontends.find_by_connection(conn.conn_id)
            self._drop(conn)
            if session is not None:
                logger.warning("Frontend %s missed ping, marking offline", session.user_id)
                self.broadcast(protocol.frontend_status(session.user_id, OFFLINE))
                dropped.append(session.user_id)
            else:
                logger.info("Closing unresponsive connection %d", conn.conn_id)
        return dropped

    # ── Queries ────────────────────────────────────────────────────

    def stats(self) -> dict:
        return {
            "connections": len(self.registry),
            "devices_online": sum(
                1 for d in self.devices.snapshot() if d["status"] == ONLINE
            ),
            "frontends_online": sum(
                1 for f in self.frontends.snapshot() if f["status"] == ONLINE
            ),
        }

    def list_devices(self) -> list[dict]:
        return self.devices.snapshot()

    def list_frontends(self) -> list[dict]:
        return self.frontends.snapshot()
