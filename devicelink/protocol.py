"""Wire protocol — message types and outbound message builders.

  Device → Broker:
    reconnect, heartbeat, nfc

  Frontend → Broker:
    accStatus, logout, deviceSelected (alias pairDevice), connection, pong

  Broker → Peer:
    connection/sayHello, status, deviceLinked, deviceUnavailable,
    deviceConnection, nfcEvent, ping, signup
"""

from __future__ import annotations

import json
from typing import Any

# Inbound
RECONNECT = "reconnect"
HEARTBEAT = "heartbeat"
ACC_STATUS = "accStatus"
LOGOUT = "logout"
DEVICE_SELECTED = "deviceSelected"
PAIR_DEVICE = "pairDevice"
CONNECTION = "connection"
NFC = "nfc"
PONG = "pong"

# Outbound
STATUS = "status"
DEVICE_LINKED = "deviceLinked"
DEVICE_UNAVAILABLE = "deviceUnavailable"
DEVICE_CONNECTION = "deviceConnection"
NFC_EVENT = "nfcEvent"
PING = "ping"
SIGNUP = "signup"

CONNECTED = "Connected"
NOT_CONNECTED = "Not connected"


def parse(raw: str | bytes) -> dict | None:
    """Decode an inbound frame. Returns None for anything that is not a JSON object."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    return data


def field(data: dict, name: str) -> str:
    """Read a string field; absent or null values read as empty."""
    value = data.get(name)
    if value is None:
        return ""
    return str(value)


def say_hello(device_id: str, owner_user_id: str) -> dict:
    return {
        "type": CONNECTION,
        "action": "sayHello",
        "ssid": device_id,
        "userID": owner_user_id,
    }


def device_status(device_id: str, status: str, msg: str) -> dict:
    return {"type": STATUS, "status": status, "ssid": device_id, "msg": msg}


def frontend_status(user_id: str, status: str) -> dict:
    return {"type": STATUS, "status": status, "userID": user_id}


def device_linked(device_id: str, user_id: str) -> dict:
    return {
        "type": DEVICE_LINKED,
        "deviceName": device_id,
        "userID": user_id,
        "message": "Device linked",
    }


def device_unavailable(device_id: str, reason: str) -> dict:
    return {"type": DEVICE_UNAVAILABLE, "deviceName": device_id, "message": reason}


def device_connection(device_id: str, connected: bool) -> dict:
    return {
        "type": DEVICE_CONNECTION,
        "deviceName": device_id,
        "message": CONNECTED if connected else NOT_CONNECTED,
    }


def nfc_event(uid: str) -> dict:
    return {"type": NFC_EVENT, "uid": uid, "message": "NFC tag detected"}


def ping() -> dict:
    return {"type": PING}


def signup(payload: dict[str, Any]) -> dict:
    return {"type": SIGNUP, **payload}
