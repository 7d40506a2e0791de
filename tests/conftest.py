"""pytest configuration for devicelink tests."""

from __future__ import annotations

import pytest

from devicelink.broker import Broker
from devicelink.registry import Connection


class FakeTransport:
    """Minimal stand-in for a Starlette WebSocket."""

    def __init__(self, fail_send: bool = False) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self.fail_send = fail_send

    async def send_json(self, data: dict) -> None:
        if self.fail_send or self.closed:
            raise RuntimeError("WebSocket is not connected")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed = True


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def drain_outbox(conn: Connection) -> list[dict]:
    """Pop every queued message (close markers skipped)."""
    messages = []
    while not conn.outbox.empty():
        item = conn.outbox.get_nowait()
        if item is not None:
            messages.append(item)
    return messages


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def broker(clock) -> Broker:
    return Broker(device_timeout=15.0, clock=clock)


@pytest.fixture
def connect(broker):
    """Factory: open a new connection on the broker."""
    def _connect() -> Connection:
        return broker.connect(FakeTransport())
    return _connect


@pytest.fixture
def drain():
    return drain_outbox
