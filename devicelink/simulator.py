"""Device simulator — behaves like an embedded board talking to the broker.

Usage:
    python -m devicelink.simulator --ssid D1 [--server ws://localhost:8080/ws]
        [--user U1] [--interval 5] [--nfc UID]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Optional

import websockets
from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)


class DeviceSimulator:
    """Connects as a device, announces itself and sends periodic heartbeats."""

    def __init__(
        self,
        server_url: str,
        ssid: str,
        user_id: str = "",
        heartbeat_interval: float = 5.0,
    ) -> None:
        self.server_url = server_url
        self.ssid = ssid
        self.user_id = user_id
        self.heartbeat_interval = heartbeat_interval

        self._ws: Optional[ClientConnection] = None
        self._reconnect_delay = 2
        self._max_reconnect_delay = 60

    async def _send(self, message: dict) -> None:
        if self._ws:
            await self._ws.send(json.dumps(message))

    async def send_reconnect(self) -> None:
        await self._send({"type": "reconnect", "ssid": self.ssid, "userID": self.user_id})

    async def send_heartbeat(self) -> None:
        await self._send({"type": "heartbeat", "ssid": self.ssid})

    async def send_nfc(self, uid: str) -> None:
        await self._send({"type": "nfc", "uid": uid, "userID": self.user_id})

    def handle(self, message: dict) -> None:
        """React to a server message (adopts the owner from sayHello/deviceLinked)."""
        msg_type = message.get("type")
        if msg_type == "connection" and message.get("action") == "sayHello":
            self.user_id = message.get("userID") or self.user_id
            logger.info("Handshake complete for %s (owner %r)", self.ssid, self.user_id)
        elif msg_type == "deviceLinked":
            self.user_id = message.get("userID") or self.user_id
            logger.info("Linked to user %s", self.user_id)
        else:
            logger.debug("Server message: %s", message)

    async def run_once(self, nfc_uid: str = "") -> None:
        """One connection lifetime: announce, heartbeat, listen until closed."""
        async with websockets.connect(self.server_url) as ws:
            self._ws = ws
            self._reconnect_delay = 2
            await self.send_reconnect()
            if nfc_uid:
                await self.send_nfc(nfc_uid)
            heartbeat = asyncio.create_task(self._heartbeat_loop())
            try:
                async for raw in ws:
                    try:
                        self.handle(json.loads(raw))
                    except ValueError:
                        logger.debug("Ignoring non-JSON frame")
            finally:
                heartbeat.cancel()
                self._ws = None

    async def run(self, nfc_uid: str = "") -> None:
        """Keep the device connected, reconnecting with exponential backoff."""
        while True:
            try:
                await self.run_once(nfc_uid)
                logger.info("Server closed the connection")
            except (OSError, websockets.ConnectionClosed, websockets.InvalidURI) as exc:
                logger.warning("Connection to %s failed: %s", self.server_url, exc)
            except websockets.InvalidHandshake as exc:
                logger.warning("Handshake with %s failed: %s", self.server_url, exc)
            logger.info("Reconnecting in %ds...", self._reconnect_delay)
            await asyncio.sleep(self._reconnect_delay)
            self._reconnect_delay = min(self._reconnect_delay * 2, self._max_reconnect_delay)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self.send_heartbeat()
            except websockets.ConnectionClosed:
                return


def main() -> None:
    parser = argparse.ArgumentParser(description="devicelink device simulator")
    parser.add_argument("--server", default="ws://localhost:8080/ws", help="Broker WebSocket URL")
    parser.add_argument("--ssid", required=True, help="Device identifier to announce")
    parser.add_argument("--user", default="", help="Owner user ID to claim")
    parser.add_argument("--interval", type=float, default=5.0, help="Heartbeat interval (s)")
    parser.add_argument("--nfc", default="", help="Send one NFC scan with this tag UID")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    sim = DeviceSimulator(args.server, args.ssid, user_id=args.user, heartbeat_interval=args.interval)
    try:
        asyncio.run(sim.run(nfc_uid=args.nfc))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
