"""Device and frontend directories — identity-scoped session state.

Sessions reference connections only by ``conn_id``. Records are never
deleted: going offline clears the connection and keeps the rest (device
ownership in particular).
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"


@dataclass
class DeviceSession:
    """Current state of one device identifier."""

    device_id: str
    conn_id: int | None = None
    owner_user_id: str = ""
    status: str = OFFLINE
    last_heartbeat: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FrontendSession:
    """Current state of one user identifier."""

    user_id: str
    conn_id: int | None = None
    status: str = OFFLINE
    last_seen: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


class DeviceDirectory:
    """Maps device identifier → :class:`DeviceSession`."""

    def __init__(self) -> None:
        self._sessions: dict[str, DeviceSession] = {}

    def get(self, device_id: str) -> DeviceSession | None:
        return self._sessions.get(device_id)

    def upsert(self, device_id: str, owner_user_id: str = "") -> tuple[DeviceSession, bool]:
        """Return the session for ``device_id``, creating it if unseen.

        The second element is True when the record was just created.
        """
        session = self._sessions.get(device_id)
        if session is not None:
            return session, False
        session = DeviceSession(device_id=device_id, owner_user_id=owner_user_id or "")
        self._sessions[device_id] = session
        return session, True

    def bind(self, session: DeviceSession, conn_id: int, now: float) -> None:
        session.conn_id = conn_id
        session.status = ONLINE
        session.last_heartbeat = now

    def release(self, device_id: str, conn_id: int) -> bool:
        """Clear the connection if it is still ``conn_id``; keep the owner.

        Returns True when the session went offline. A connection that was
        already superseded by a newer one leaves the session untouched.
        """
        session = self._sessions.get(device_id)
        if session is None or session.conn_id != conn_id:
            return False
        session.conn_id = None
        session.status = OFFLINE
        return True

    def owned_by(self, user_id: str) -> DeviceSession | None:
        """The device owned by ``user_id``: online first, then most recent."""
        owned = [s for s in self._sessions.values() if user_id and s.owner_user_id == user_id]
        if not owned:
            return None
        owned.sort(key=lambda s: (s.status == ONLINE, s.last_heartbeat), reverse=True)
        return owned[0]

    def snapshot(self) -> list[dict]:
        return [s.to_dict() for s in self._sessions.values()]

    def __len__(self) -> int:
        return len(self._sessions)


class FrontendDirectory:
    """Maps user identifier → :class:`FrontendSession`."""

    def __init__(self) -> None:
        self._sessions: dict[str, FrontendSession] = {}

    def get(self, user_id: str) -> FrontendSession | None:
        return self._sessions.get(user_id)

    def register(self, user_id: str, conn_id: int, now: float) -> FrontendSession:
        session = self._sessions.get(user_id)
        if session is None:
            session = FrontendSession(user_id=user_id)
            self._sessions[user_id] = session
        session.conn_id = conn_id
        session.status = ONLINE
        session.last_seen = now
        return session

    def logout(self, user_id: str) -> bool:
        """Set offline and clear the connection. Returns False if absent."""
        session = self._sessions.get(user_id)
        if session is None:
            return False
        session.conn_id = None
        session.status = OFFLINE
        return True

    def mark_offline(self, user_id: str, now: float) -> bool:
        if not self.logout(user_id):
            return False
        self._sessions[user_id].last_seen = now
        return True

    def find_by_connection(self, conn_id: int) -> FrontendSession | None:
        for session in self._sessions.values():
            if session.conn_id == conn_id:
                return session
        return None

    def is_online(self, user_id: str) -> bool:
        session = self._sessions.get(user_id)
        return session is not None and session.status == ONLINE

    def snapshot(self) -> list[dict]:
        return [s.to_dict() for s in self._sessions.values()]

    def __len__(self) -> int:
        return len(self._sessions)
