"""Tests for the liveness sweeps and the supervisor loop."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from devicelink.directory import OFFLINE, ONLINE
from devicelink.supervisor import LivenessSupervisor


class TestDeviceSweep:
    def test_idle_device_goes_offline(self, broker, clock, connect, drain):
        device = connect()
        observer = connect()
        broker.reconnect(device, "D1", "U1")
        drain(device)

        clock.advance(16)
        assert broker.sweep_devices() == ["D1"]

        session = broker.devices.get("D1")
        assert session.status == OFFLINE
        assert session.conn_id is None
        assert session.owner_user_id == "U1"
        assert device.closed is True
        assert device not in broker.registry
        assert drain(observer) == [{
            "type": "status",
            "status": "offline",
            "ssid": "D1",
            "msg": "Device not responding",
        }]

    def test_within_threshold_stays_online(self, broker, clock, connect):
        device = connect()
        broker.reconnect(device, "D1")
        clock.advance(15)
        assert broker.sweep_devices() == []
        assert broker.devices.get("D1").status == ONLINE

    def test_heartbeat_resets_deadline(self, broker, clock, connect):
        device = connect()
        broker.reconnect(device, "D1")
        clock.advance(10)
        broker.heartbeat(device, "D1")
        clock.advance(10)
        assert broker.sweep_devices() == []
        clock.advance(6)
        assert broker.sweep_devices() == ["D1"]

    def test_explicit_now(self, broker, clock, connect):
        broker.reconnect(connect(), "D1")
        assert broker.sweep_devices(now=clock.now + 100) == ["D1"]

    def test_unannounced_connections_are_ignored(self, broker, clock, connect):
        idle = connect()
        frontend = connect()
        broker.register_frontend(frontend, "U1")
        clock.advance(1000)
        assert broker.sweep_devices() == []
        assert idle in broker.registry
        assert frontend in broker.registry


class TestFrontendSweep:
    def test_first_sweep_pings(self, broker, connect, drain):
        frontend = connect()
        broker.register_frontend(frontend, "U1")
        assert broker.sweep_frontends() == []
        assert frontend.alive is False
        assert drain(frontend) == [{"type": "ping"}]

    def test_pong_keeps_session(self, broker, connect, drain):
        frontend = connect()
        broker.register_frontend(frontend, "U1")
        broker.sweep_frontends()
        broker.mark_alive(frontend)
        assert broker.sweep_frontends() == []
        assert broker.frontends.get("U1").status == ONLINE
        assert frontend in broker.registry

    def test_missed_ping_drops_frontend(self, broker, connect, drain):
        frontend = connect()
        observer = connect()
        broker.register_frontend(frontend, "U1")
        broker.sweep_frontends()
        drain(observer)

        assert broker.sweep_frontends() == ["U1"]

        session = broker.frontends.get("U1")
        assert session.status == OFFLINE
        assert session.conn_id is None
        assert frontend.closed is True
        assert frontend not in broker.registry
        assert drain(observer) == [{"type": "status", "status": "offline", "userID": "U1"}]

    def test_logged_out_connection_closed_without_notice(self, broker, connect, drain):
        frontend = connect()
        observer = connect()
        broker.register_frontend(frontend, "U1")
        broker.logout("U1")
        broker.sweep_frontends()
        assert broker.sweep_frontends() == []
        assert frontend.closed is True
        assert drain(observer) == []

    def test_devices_are_not_pinged(self, broker, connect, drain):
        device = connect()
        broker.reconnect(device, "D1")
        drain(device)
        broker.sweep_frontends()
        broker.sweep_frontends()
        assert drain(device) == []
        assert device in broker.registry


class TestLivenessSupervisor:
    def test_initial_state(self, broker):
        supervisor = LivenessSupervisor(broker, device_sweep_interval=5, frontend_ping_interval=15)
        assert supervisor.running is False
        assert supervisor.device_sweep_interval == 5
        assert supervisor.frontend_ping_interval == 15

    async def test_start_stop(self, broker):
        supervisor = LivenessSupervisor(broker)
        await supervisor.start()
        assert supervisor.running is True
        await supervisor.stop()
        assert supervisor.running is False

    async def test_stop_is_idempotent(self, broker):
        supervisor = LivenessSupervisor(broker)
        await supervisor.stop()
        assert supervisor.running is False

    async def test_double_start(self, broker):
        supervisor = LivenessSupervisor(broker)
        await supervisor.start()
        await supervisor.start()
        assert len(supervisor._tasks) == 2
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_loops_run_sweeps(self):
        fake = MagicMock()
        fake.sweep_devices.return_value = []
        fake.sweep_frontends.return_value = ["U1"]
        supervisor = LivenessSupervisor(fake, device_sweep_interval=0.01, frontend_ping_interval=0.01)
        await supervisor.start()
        await asyncio.sleep(0.1)
        await supervisor.stop()
        assert fake.sweep_devices.call_count >= 2
        assert fake.sweep_frontends.call_count >= 2

    @pytest.mark.asyncio
    async def test_failing_sweep_does_not_stop_loop(self):
        fake = MagicMock()
        fake.sweep_devices.side_effect = RuntimeError("boom")
        fake.sweep_frontends.return_value = []
        supervisor = LivenessSupervisor(fake, device_sweep_interval=0.01, frontend_ping_interval=1)
        await supervisor.start()
        await asyncio.sleep(0.1)
        await supervisor.stop()
        assert fake.sweep_devices.call_count >= 2

    @pytest.mark.asyncio
    async def test_times_out_device_within_one_interval(self, broker, clock, connect):
        device = connect()
        broker.reconnect(device, "D1")
        interval = 0.05
        supervisor = LivenessSupervisor(
            broker, device_sweep_interval=interval, frontend_ping_interval=60
        )
        await supervisor.start()
        try:
            clock.advance(15)
            await asyncio.sleep(interval * 3)
            assert broker.devices.get("D1").status == ONLINE

            clock.advance(0.5)
            await asyncio.sleep(interval * 2)
            assert broker.devices.get("D1").status == OFFLINE
            assert device.closed is True
            assert device not in broker.registry
        finally:
            await supervisor.stop()
